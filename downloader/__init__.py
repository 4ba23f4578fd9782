"""
Downloader package for the manga importer.
Handles proxied HTTP fetching, retry logic and cancellation.
"""

from .fetcher import CancelToken, RetryingFetcher

__all__ = ["CancelToken", "RetryingFetcher"]
