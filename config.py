import os


def _flag(name, default="false"):
    return os.getenv(name, default).lower() in ("1", "true", "yes")


class Config:
    def __init__(self):
        self.scrape_source = os.getenv("SCRAPE_SOURCE", "plumacomics")
        self.proxy_provider = os.getenv("PROXY_PROVIDER", "scraperapi")

        # bounded retry for catalog / chapter-list / image fetches
        self.retry_count = int(os.getenv("RETRY_COUNT", 2))
        self.retry_base_delay = float(os.getenv("RETRY_DELAY", 2))

        # persistent retry for page extraction, 0 = no attempt ceiling
        self.page_retry_delay = float(os.getenv("PAGE_RETRY_DELAY", 3))
        self.page_retry_max_delay = float(os.getenv("PAGE_RETRY_MAX_DELAY", 60))
        self.page_retry_limit = int(os.getenv("PAGE_RETRY_LIMIT", 20))

        self.chapter_delay = float(os.getenv("CHAPTER_DELAY", 1))

        self.storage_backend = os.getenv("STORAGE_BACKEND", "memory")
        self.supabase_url = os.getenv("SUPABASE_URL", "")
        self.supabase_key = os.getenv("SUPABASE_KEY", "")
        self.compress_images = _flag("COMPRESS_IMAGES")

        self.redis_url = os.getenv("REDIS_URL", "redis://redis:6379/0")
        self.admin_token = os.getenv("ADMIN_TOKEN", "")

    def proxy_key(self, provider_id: str) -> str:
        return os.getenv(f"PROXY_KEY_{provider_id.upper()}", "")


def get_config():
    return Config()
