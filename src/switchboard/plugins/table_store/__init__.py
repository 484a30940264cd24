"""Table store plugin (Airtable-compatible REST API)."""

from switchboard.plugins.table_store.client import TableStoreClient
from switchboard.plugins.table_store.plugin import TableStorePlugin

__all__ = ["TableStoreClient", "TableStorePlugin"]
