"""
proxies/providers.py
The five interchangeable fetch-and-render proxy services.
Each provider only knows how to turn a target url into its own request url.
"""

from urllib.parse import quote

from config import get_config
from errors import ValidationError


def encode_target(url: str) -> str:
    """Percent-encode a url the way encodeURIComponent does."""
    return quote(url, safe="!*'()")


class ProxyProvider:
    id = ""
    display_name = ""
    base_url = ""
    key_param = ""
    render_param = None  # None: the service ignores the render flag

    def __init__(self, key: str = None):
        self.key = key if key is not None else get_config().proxy_key(self.id)

    @property
    def supports_rendering(self) -> bool:
        return self.render_param is not None

    def build_url(self, target_url: str, wants_rendering: bool = False) -> str:
        url = f"{self.base_url}?{self.key_param}={self.key}&url={encode_target(target_url)}"
        if wants_rendering and self.render_param:
            url += f"&{self.render_param}=true"
        return url

    def describe(self):
        return {
            "id": self.id,
            "name": self.display_name,
            "rendering": self.supports_rendering,
            "configured": bool(self.key),
        }

    def __repr__(self):
        return f"<{self.__class__.__name__} {self.id}>"


class ScraperApiProvider(ProxyProvider):
    id = "scraperapi"
    display_name = "ScraperAPI"
    base_url = "http://api.scraperapi.com"
    key_param = "api_key"
    render_param = "render"


class ScrapeDoProvider(ProxyProvider):
    id = "scrapedo"
    display_name = "Scrape.do"
    base_url = "https://api.scrape.do"
    key_param = "token"
    render_param = "render"


class ScrapingAntProvider(ProxyProvider):
    id = "scrapingant"
    display_name = "ScrapingAnt"
    base_url = "https://api.scrapingant.com/v2/general"
    key_param = "x-api-key"
    render_param = "browser"


class AbstractApiProvider(ProxyProvider):
    id = "abstractapi"
    display_name = "AbstractAPI"
    base_url = "https://scrape.abstractapi.com/v1/"
    key_param = "api_key"


class ProxyScrapeProvider(ProxyProvider):
    id = "proxyscrape"
    display_name = "ProxyScrape"
    base_url = "https://api.proxyscrape.com/v3/accounts/freebies/scraperapi/request"
    key_param = "auth"


PROVIDERS = {
    cls.id: cls
    for cls in (
        ScraperApiProvider,
        ScrapeDoProvider,
        ScrapingAntProvider,
        AbstractApiProvider,
        ProxyScrapeProvider,
    )
}


def get_provider(provider_id: str, key: str = None) -> ProxyProvider:
    cls = PROVIDERS.get((provider_id or "").lower())
    if cls is None:
        raise ValidationError(f"Proxy desconhecido: {provider_id}")
    return cls(key)


def list_providers():
    return [get_provider(pid).describe() for pid in PROVIDERS]
