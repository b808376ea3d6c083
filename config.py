import os
from dataclasses import dataclass
from typing import Optional
from dotenv import load_dotenv

load_dotenv()

@dataclass
class Settings:
    # API settings
    api_host: str = os.getenv("API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("API_PORT", "8000"))
    api_key: str = os.getenv("API_KEY", "super-secret-key")

    # Storage settings
    database_file: Optional[str] = os.getenv("LIBRARY_DB_FILE") or os.getenv("LIBRARY_DATA_FILE")
    seed_file: Optional[str] = os.getenv("LIBRARY_SEED_FILE")

    # Lending rules
    loan_period_days: int = int(os.getenv("LOAN_PERIOD_DAYS", "30"))
    default_popular_limit: int = int(os.getenv("DEFAULT_POPULAR_LIMIT", "5"))

    # AI metadata assistant (Gemini)
    gemini_api_key: Optional[str] = os.getenv("GEMINI_API_KEY")
    gemini_model: str = os.getenv("GEMINI_MODEL", "gemini-pro")
    gemini_base_url: str = os.getenv("GEMINI_BASE_URL", "https://generativelanguage.googleapis.com/v1beta")
    ai_timeout: float = float(os.getenv("AI_TIMEOUT", "15"))
    enable_ai_features: bool = os.getenv("ENABLE_AI_FEATURES", "True").lower() in ("true", "1", "yes")

    # Application settings
    app_name: str = os.getenv("APP_NAME", "LibGenius Lending")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    debug: bool = os.getenv("DEBUG", "False").lower() in ("true", "1", "yes")
    environment: str = os.getenv("ENVIRONMENT", "development")


settings = Settings()
