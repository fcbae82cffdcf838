"""Services package initialization"""
from .classifier import classify
from .fetcher import FetchError, Fetcher
from .scanner import ScanReport, Scanner
from .storage import KeyValueStore, PageRepository, StorageError

__all__ = [
    "FetchError",
    "Fetcher",
    "KeyValueStore",
    "PageRepository",
    "ScanReport",
    "Scanner",
    "StorageError",
    "classify",
]
