from errors import ValidationError
from scrapers import NexusToonsProfile, PlumaComicsProfile

SOURCES = {
    profile.name: profile
    for profile in (PlumaComicsProfile(), NexusToonsProfile())
}


def get_source(name: str):
    profile = SOURCES.get((name or "").lower())
    if profile is None:
        raise ValidationError(f"Fonte desconhecida: {name}")
    return profile


def list_sources():
    return [profile.describe() for profile in SOURCES.values()]


def find_source_for_url(url: str):
    for profile in SOURCES.values():
        if profile.validate_manga_url(url):
            return profile
    return None
