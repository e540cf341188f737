from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    api_base_url: str = "http://localhost:3000/api"
    api_timeout: float = 30.0
    log_level: str = "INFO"

    # Visible window and pagination
    window_size: int = 20
    page_size: int = 20
    pinned_index: int = 3

    # Per-lane quiet periods (milliseconds)
    score_debounce_ms: int = 500
    bump_debounce_ms: int = 300
    insertion_debounce_ms: int = 1500

    # Cap on distinct ids waiting in the fetch-backed lanes
    max_pending_insertions: int = 10

    # Smallest vote impact change worth re-rendering
    impact_epsilon: float = 0.001

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "env_prefix": "FEEDSYNC_"}


settings = Settings()
