import logging

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration with environment variable support"""
    
    # Database (persisted session records)
    database_url: str = "sqlite:///./bridgehealth.db"
    
    # App
    app_name: str = "BridgeHealth Terminology Bridge"
    debug: bool = False
    log_level: str = "INFO"
    
    # Code catalog (external autocomplete endpoint)
    catalog_url: str = "http://localhost:3001/autocomplete"
    catalog_limit: int = 50
    catalog_timeout: float = 10.0
    catalog_version: str = "v2.1"  # Tag applied when the provider omits one
    
    # Search debounce window in milliseconds (never below 300)
    search_debounce_ms: int = 300
    
    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_prefix": "BRIDGEHEALTH_",
    }


def configure_logging(level: str = None) -> None:
    """Configure root logging for the service."""
    logging.basicConfig(
        level=(level or settings.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


settings = Settings()
