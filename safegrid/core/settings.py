"""
Core settings and environment variables for SafeGrid Alert Hub.
Uses pydantic-settings for type-safe environment variable loading.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Create a .env file in the root directory to configure these.
    """

    # Application
    APP_NAME: str = "SafeGrid Alert Hub"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False

    # CORS - Frontend URLs allowed to access this API (comma separated)
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173,http://localhost:5174"

    # Firebase/Firestore
    FIREBASE_PROJECT_ID: Optional[str] = None
    FIREBASE_CREDENTIALS_PATH: Optional[str] = None  # Path to service account JSON

    # Geocoding (risk cell names)
    # - GEOCODING_PROVIDER: "nominatim" (default, no API key) or "google"
    # - GOOGLE_MAPS_API_KEY: optional; only used when provider is "google"
    GEOCODING_PROVIDER: str = "nominatim"
    GOOGLE_MAPS_API_KEY: Optional[str] = None

    # Fallback hand-off for undeliverable alerts
    # REDIS_URL unset means the durable log is the only fallback target.
    REDIS_URL: Optional[str] = None
    FALLBACK_NAMESPACE: str = "sos"
    FALLBACK_TTL_SECONDS: int = 3600
    FALLBACK_LOG_PATH: str = "./logs/fallback.log"

    # Risk grid
    GRID_SIZE_DEG: float = 0.0045  # ~500m cell side

    # Periodic jobs
    SCHEDULER_ENABLED: bool = True
    RESCORE_INTERVAL_MINUTES: int = 30
    RISK_UPDATE_INTERVAL_MINUTES: int = 60
    SCHEDULER_MAX_INSTANCES: int = 10  # overlapping runs are tolerated, not skipped

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "allow"  # Allow extra env vars to prevent crashes

    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]


# Global settings instance
settings = Settings()
