"""Application settings loaded from environment variables."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    # LLM (external dashboard planner)
    gemini_api_key: str = ""
    gemini_model: str = "gemini-2.0-flash"
    planner_enabled: bool = True

    # CRM / funnel template detection
    crm_match_threshold: int = 60  # uncalibrated; see DESIGN.md

    # Specification limits
    max_kpis: int = 8
    max_charts: int = 4

    # Aggregation preview
    preview_max_rows: int = 1000

    # Lookup tables: JSON file overriding the built-in vocabulary ("" = built-in)
    vocabulary_path: str = ""


settings = Settings()
