"""
URL configuration for the fiscalflow HTTP surface.
"""

from django.urls import path

from . import views

urlpatterns = [
    path("api/webhooks/nuvem-fiscal", views.nuvem_fiscal_webhook, name="nuvem_fiscal_webhook"),
    path("api/sync/trigger", views.trigger_sync, name="trigger_sync"),
    path("api/documents/manifest", views.manifest_document, name="manifest_document"),
    path("api/documents/download", views.download_document, name="download_document"),
]
