from .airtable import AirtableAdapter
from .base import StoreAdapter
from .postgres import PostgresAdapter
from .sqlite import SQLiteAdapter

__all__ = ["AirtableAdapter", "PostgresAdapter", "SQLiteAdapter", "StoreAdapter"]
