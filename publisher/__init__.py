"""
Publisher package for the manga importer.
Re-hosts page images and writes manga/chapter rows.
"""

from .assets import AssetRepublisher, extension_for, page_path
from .catalog import CatalogPublisher, slugify

__all__ = [
    "AssetRepublisher",
    "CatalogPublisher",
    "extension_for",
    "page_path",
    "slugify",
]
