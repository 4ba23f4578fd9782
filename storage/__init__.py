"""
Storage package for the manga importer.
Object storage and catalog database collaborators.
"""

from rich.console import Console

from config import get_config

from .memory import MemoryCatalogStore, MemoryObjectStorage
from .supabase import SupabaseCatalog, SupabaseStorage

console = Console()

__all__ = [
    "MemoryCatalogStore",
    "MemoryObjectStorage",
    "SupabaseCatalog",
    "SupabaseStorage",
    "build_storage",
]


def build_storage(config=None):
    """Returns (object_storage, catalog_store) for the configured backend."""
    config = config or get_config()
    if config.storage_backend == "supabase":
        if not config.supabase_url or not config.supabase_key:
            raise RuntimeError("STORAGE_BACKEND=supabase needs SUPABASE_URL and SUPABASE_KEY")
        return (
            SupabaseStorage(config.supabase_url, config.supabase_key),
            SupabaseCatalog(config.supabase_url, config.supabase_key),
        )
    console.log("[yellow]Using in-memory storage, nothing will be persisted[/yellow]")
    return MemoryObjectStorage(), MemoryCatalogStore()
