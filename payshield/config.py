from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # ==========================================================================
    # ENVIRONMENT
    # ==========================================================================
    environment: str = "dev"  # "dev", "prod"
    debug: bool = True
    host: str = "0.0.0.0"
    port: int = 8000

    # ==========================================================================
    # DATABASE
    # ==========================================================================
    database_url: str = "sqlite:///./payshield.db"

    # ==========================================================================
    # SUPABASE (identity provider + content store)
    # ==========================================================================
    supabase_url: str = "http://localhost:54321"
    supabase_service_role_key: str = ""
    supabase_anon_key: str = ""
    default_bucket: str = "scans"

    # ==========================================================================
    # GOOGLE VISION (OCR)
    # ==========================================================================
    google_vision_api_key: str = ""
    google_vision_url: str = "https://vision.googleapis.com/v1/images:annotate"

    # ==========================================================================
    # OPENAI (reasoning model)
    # ==========================================================================
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    openai_max_tokens: int = 400  # Max tokens for the reasoning response

    # ==========================================================================
    # EXPO PUSH
    # ==========================================================================
    expo_push_url: str = "https://exp.host/--/api/v2/push/send"
    expo_access_token: str = ""
    expo_chunk_size: int = 100  # Provider batch limit

    # ==========================================================================
    # TIMEOUTS (seconds, per external call)
    # ==========================================================================
    storage_timeout: float = 20.0
    ocr_timeout: float = 30.0
    reasoning_timeout: float = 45.0
    push_timeout: float = 15.0
    auth_timeout: float = 10.0

    # ==========================================================================
    # RETRY ATTEMPTS
    # ==========================================================================
    ocr_max_attempts: int = 3
    reasoning_max_attempts: int = 2
    push_max_attempts: int = 3

    # ==========================================================================
    # RISK THRESHOLDS (0-100 scale)
    # ==========================================================================
    alert_threshold: int = 70  # Score >= this raises a fraud alert
    high_risk_stats_threshold: int = 70  # Score >= this counts as high risk in profile stats

    # ==========================================================================
    # CORS
    # ==========================================================================
    cors_origins: str = "*"  # Comma-separated origins, or "*" for all

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ==========================================================================
    # COMPUTED PROPERTIES
    # ==========================================================================

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "prod"

    @property
    def cors_origins_list(self) -> list:
        if self.cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def reasoning_enabled(self) -> bool:
        return bool(self.openai_api_key.strip())


settings = Settings()
