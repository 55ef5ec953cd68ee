"""
CLI runner module.

Provides commands:
- init-config: Write a default config file
- company-add: Register a company
- sync: Pull the distribution feed for a company
- runs: Show sync run history
- manifest: Manifest an NF-e
- download: Save a document's XML or PDF
- status: Show store statistics
- serve: Run the HTTP endpoints
"""

from .main import create_cli, main

__all__ = [
    "create_cli",
    "main",
]
