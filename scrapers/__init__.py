"""
Scrapers package for the manga importer.
One SiteProfile per supported source plus the shared parsing helpers.
"""

from .base import SiteProfile, is_placeholder, parse_chapter_number, slug_from_url
from .nexus import NexusToonsProfile
from .pluma import PlumaComicsProfile

__all__ = [
    "SiteProfile",
    "PlumaComicsProfile",
    "NexusToonsProfile",
    "is_placeholder",
    "parse_chapter_number",
    "slug_from_url",
]
