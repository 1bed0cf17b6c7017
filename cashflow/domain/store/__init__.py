"""This module persists requests behind a compare-and-swap write."""
from .request_store import RequestFilters, RequestStore
from .in_memory_request_store import InMemoryRequestStore
from .sql_request_store import SqlRequestStore
