"""
Proxies package for the manga importer.
Builds request urls for the third-party fetch-and-render services.
"""

from .providers import ProxyProvider, PROVIDERS, get_provider, list_providers

__all__ = [
    "ProxyProvider",
    "PROVIDERS",
    "get_provider",
    "list_providers",
]
