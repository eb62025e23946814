import os
from pydantic_settings import BaseSettings
from typing import List, Tuple

class Settings(BaseSettings):
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./logitrack.db")
    session_secret: str = os.getenv("SESSION_SECRET", "default-dev-secret-change-in-production")

    @property
    def secret_key(self) -> str:
        """JWT signing key"""
        return self.session_secret

    algorithm: str = "HS256"
    access_token_expire_minutes: int = 1440  # 24 hours, drivers keep the app open all shift
    min_password_length: int = 6
    password_pepper: str = os.getenv("PASSWORD_PEPPER", "")
    admin_email: str = os.getenv("ADMIN_EMAIL", "admin@logitrack.local")
    admin_password: str = os.getenv("ADMIN_PASSWORD", "Admin@123")

    # Location throttling
    throttle_interval_ms: int = 5000
    gps_min_displacement_m: float = 10.0
    ip_min_displacement_m: float = 100.0

    # GPS acquisition
    gps_accuracy_threshold_m: float = 100.0
    gps_timeout_seconds: float = 15.0
    gps_max_attempts: int = 3
    gps_backoff_seconds: float = 2.0
    gps_retry_maximum_age_ms: int = 30000
    watch_accuracy_threshold_m: float = 50.0
    watch_timeout_ms: int = 20000
    watch_maximum_age_ms: int = 10000
    watch_distance_filter_m: float = 10.0

    # Background timers
    safety_refresh_seconds: float = 30.0
    gps_retry_interval_seconds: float = 60.0
    ip_refresh_interval_seconds: float = 300.0

    # IP fallback
    ip_geolocation_endpoints: List[str] = [
        "https://ipapi.co/json/",
        "https://ipinfo.io/json/",
        "https://geolocation-db.com/json/",
    ]
    ip_geolocation_timeout_seconds: float = 5.0
    fallback_cities: List[Tuple[float, float]] = [
        (28.6139, 77.2090),  # Delhi
        (19.0760, 72.8777),  # Mumbai
        (12.9716, 77.5946),  # Bangalore
        (13.0827, 80.2707),  # Chennai
        (11.9327, 79.8339),  # Pondicherry
    ]
    default_centroid: Tuple[float, float] = (20.5937, 78.9629)  # centre of India

    # Assignment / consistency
    assignment_max_retries: int = 5
    consistency_sweep_interval_seconds: int = 0  # 0 disables the background sweep

    # External services
    osrm_base_url: str = "https://router.project-osrm.org"
    map_sdk_url_template: str = "https://apis.mappls.com/advancedmaps/api/{token}/map_sdk?v=3.8&layer=vector"
    map_token: str = os.getenv("MAPPLS_TOKEN", "")

    class Config:
        env_file = ".env"

settings = Settings()
