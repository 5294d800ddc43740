from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # LLM (OpenAI-compatible gateway)
    openrouter_api_key: str = ""
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    extraction_model: str = "google/gemini-2.0-flash-001"
    extraction_max_tokens: int = 4096
    extraction_timeout_s: float = 30.0
    reprompt_timeout_s: float = 6.0

    # Search providers
    search_providers: str = "web-search,search-engine"  # web-search | search-engine | database
    search_merge_mode: str = "additive"  # additive | first
    search_sufficient_results: int = 10  # 0 = always query every provider
    search_max_results: int = 20
    google_cse_key: str = ""
    google_cse_cx: str = ""
    firecrawl_api_key: str = ""
    firecrawl_base_url: str = "https://api.firecrawl.dev"
    firecrawl_search_timeouts: str = "20,12"

    # Query cache
    query_cache_enabled: bool = True
    query_cache_ttl_seconds: int = 6 * 60 * 60
    query_cache_max_entries: int = 256

    # Reliability
    retry_budget_max_retries: int = 20
    retry_budget_window_s: float = 60.0
    circuit_failure_threshold: float = 5.0
    circuit_cooldown_s: float = 30.0
    circuit_timeout_weight: float = 0.5

    # Aggregator pre-filter + rerank
    prefilter_min_non_aggregator_urls: int = 5
    prefilter_max_backstop_aggregators: int = 3
    voyage_api_key: str = ""
    voyage_base_url: str = "https://api.voyageai.com/v1"
    rerank_model: str = "rerank-2"
    rerank_max_input_docs: int = 40
    rerank_top_k: int = 12
    rerank_timeout_s: float = 15.0
    rerank_country_tld_bonus: float = 0.08
    rerank_conference_path_bonus: float = 0.05

    # Extraction pipeline
    pipeline_max_extractions: int = 12
    pipeline_max_parallel_extract: int = 1
    fetch_timeout_s: float = 20.0
    fetch_max_page_chars: int = 120000
    chunk_size_chars: int = 12000
    chunk_max_chunks: int = 6

    # Event store
    supabase_url: str = ""
    supabase_anon_key: str = ""
    events_table: str = "collected_events"
    profiles_table: str = "profiles"

    # App
    cors_origins: str = "http://localhost:3000"
    app_log_level: str = "INFO"
    noisy_log_level: str = "WARNING"
    log_to_file: bool = False
    log_dir: str = "logs"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",")]

    @property
    def search_provider_list(self) -> list[str]:
        return [p.strip().lower() for p in self.search_providers.split(",") if p.strip()]

    @property
    def firecrawl_timeout_list(self) -> list[float]:
        timeouts: list[float] = []
        for raw in self.firecrawl_search_timeouts.split(","):
            raw = raw.strip()
            if raw:
                timeouts.append(float(raw))
        return timeouts or [20.0, 12.0]


settings = Settings()
