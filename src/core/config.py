from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    env: str = "development"
    log_level: str = "info"

    portal_domain: str = "adstransparency.google.com"
    default_source: str = "serpapi"

    serpapi_api_key: str | None = None
    serpapi_url: str = "https://serpapi.com/search"
    serpapi_engine: str = "google_ads_transparency_center"
    serpapi_page_size: int = 100
    serpapi_max_pages: int = 10
    serpapi_batch_max_pages: int = 5
    serpapi_rate_limit_backoff_ms: int = 5000
    serpapi_timeout_ms: int = 30000

    details_limit: int = 100
    details_batch_size: int = 10
    details_batch_delay_ms: int = 200
    details_timeout_ms: int = 10000

    firecrawl_api_key: str | None = None
    firecrawl_url: str = "https://api.firecrawl.dev"
    firecrawl_crawl_limit: int = 50
    firecrawl_max_depth: int = 2
    firecrawl_wait_for_ms: int = 3000
    firecrawl_poll_interval_ms: int = 2000
    firecrawl_max_polls: int = 150
    firecrawl_timeout_ms: int = 60000

    apify_api_token: str | None = None
    apify_url: str = "https://api.apify.com"
    apify_actor_id: str = "memo23~google-ad-transparency-scraper-cheerio"
    apify_run_timeout_sec: int = 3600
    apify_page_limit: int = 200
    apify_poll_interval_ms: int = 5000
    apify_max_polls: int = 720
    apify_timeout_ms: int = 30000

    browser_headless: bool = True
    browser_timeout_ms: int = 30000
    browser_wait_until: str = "networkidle"
    browser_settle_ms: int = 3000
    browser_load_more_wait_ms: int = 3000
    browser_scroll_wait_ms: int = 2000
    browser_max_pages: int = 50
    browser_user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    )

    orchestrator_batch_delay_ms: int = 300
    orchestrator_max_records: int = 10000
    orchestrator_pause_poll_ms: int = 100

    openai_api_key: str | None = None
    vision_model: str = "gpt-4o-mini"
    vision_max_tokens: int = 512
    vision_temperature: float = 0.0
    vision_timeout_ms: int = 30000
    vision_inline_images: bool = True
    vision_image_timeout_ms: int = 10000
    vision_limit: int = 50
    vision_batch_size: int = 3
    vision_batch_delay_ms: int = 1000

    ocr_max_items: int = 100
    ocr_batch_size: int = 15
    ocr_batch_delay_ms: int = 200

    metrics_enabled: bool = True

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


settings = Settings()
