"""
Inbound HTTP surface (Django).

Endpoints:
- POST /api/webhooks/nuvem-fiscal: Nuvem Fiscal document events
- POST /api/sync/trigger: Run one sync for a company
- POST /api/documents/manifest: Manifest an NF-e
- GET  /api/documents/download: Fetch a document's XML or PDF
"""
