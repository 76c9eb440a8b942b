from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # OpenRouter (text completion)
    openrouter_api_key: str = ""
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    default_model: str = "openai/gpt-4o-mini"
    openrouter_model: str = ""
    completion_timeout_seconds: float = 30.0

    # Search provider
    search_provider: str = "brave"  # brave | tavily
    brave_api_key: str = ""
    tavily_api_key: str = ""
    search_fallback_to_tavily: bool = True
    search_timeout_seconds: float = 30.0
    search_results_buffer_factor: int = 2
    search_variant_failure_fatal: bool = False

    # Iteration loop
    max_iterations: int = 2
    convergence_threshold: float = 0.6
    max_query_variants: int = 5
    rrf_k: int = 60
    rrf_beta: float = 0.1
    max_evidence_spans: int = 3
    gap_hint_max_facts: int = 5
    enrichment_enabled: bool = True
    request_deadline_seconds: float = 120.0  # 0 disables the request-level deadline
    deadline_slack_seconds: float = 30.0  # headroom above one fetch timeout

    # Fetch queue
    scrape_provider: str = "auto"  # firecrawl | http | auto
    firecrawl_base_url: str = ""
    firecrawl_api_key: str = ""
    scrape_max_page_chars: int = 120000
    scrape_max_age_ms: int = 3 * 24 * 60 * 60 * 1000
    scrape_job_retention_seconds: float = 600.0  # finished jobs kept for lookup

    # Policy / billing
    blocked_domains: str = ""  # comma separated, added to the built-in list
    credits_per_result: int = 1

    # App
    cors_origins: str = "http://localhost:3000"
    app_log_level: str = "INFO"
    noisy_log_level: str = "WARNING"
    log_dir: str = "logs"
    log_to_file: bool = True

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",")]

    @property
    def blocked_domain_list(self) -> list[str]:
        return [d.strip().lower() for d in self.blocked_domains.split(",") if d.strip()]


settings = Settings()
