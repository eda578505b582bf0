"""Settings management"""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings"""

    # Database
    database_url: str = "sqlite:///./whereto.db"

    # Catalog gateway: "sql" reads the local venue tables, "http" calls a catalog service
    catalog_backend: str = "sql"
    catalog_base_url: Optional[str] = None
    catalog_timeout: float = 10.0

    # Shortlist
    default_center_lat: float = 47.0104  # Chisinau center
    default_center_lng: float = 28.8638
    city_center_radius_m: int = 5000
    default_radius_m: int = 10000
    min_rating: float = 3.5
    candidate_limit: int = 50
    shortlist_size: int = 5

    # Voting
    default_voting_hours: float = 6
    max_voting_hours: float = 72

    # Logging
    log_dir: str = "logs"
    log_level: str = "INFO"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()
