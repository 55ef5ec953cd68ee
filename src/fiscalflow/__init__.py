"""
Nuvem Fiscal distribution feed → idempotent local document store

Pulls NF-e documents from the distribution feed by NSU cursor, accepts the
same documents pushed as webhook events, and merges both paths into a
deduplicated SQLite store with per-run sync bookkeeping.
"""

__version__ = "0.1.0"
