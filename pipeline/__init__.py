"""
Pipeline package for the manga importer.
The scrape-to-publish workflow and its per-chapter job records.
"""

from config import get_config
from downloader import RetryingFetcher
from publisher import AssetRepublisher, CatalogPublisher
from storage import build_storage

from .jobs import MemoryJobStore, RedisJobStore
from .scrape import ScrapePipeline, Stage

__all__ = [
    "MemoryJobStore",
    "RedisJobStore",
    "ScrapePipeline",
    "Stage",
    "build_pipeline",
]


def build_pipeline(config=None, job_store=None, **kwargs):
    """Wire fetcher, storage and publisher into a ready pipeline."""
    config = config or get_config()
    fetcher = RetryingFetcher(config)
    storage, catalog = build_storage(config)
    republisher = AssetRepublisher(fetcher, storage, config)
    publisher = CatalogPublisher(fetcher, catalog, republisher)
    return ScrapePipeline(fetcher, publisher, config=config, job_store=job_store, **kwargs)
