"""Configuration settings for the Imaging Intake service."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Database
    database_url: str = "sqlite:////app/data/imaging.db"
    database_echo: bool = False

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_reload: bool = False

    # Content store
    storage_dir: str = "/app/data/imaging"
    orphan_grace_seconds: int = 3600  # blobs younger than this are never swept

    # Outbound HTTP (providers and barcode service)
    http_timeout_seconds: float = 30.0

    # Barcode detection service; empty disables detection
    barcode_service_url: str = ""
    barcode_service_timeout_seconds: float = 120.0

    # Provider endpoints
    office365_authority_url: str = "https://login.microsoftonline.com"
    office365_graph_url: str = "https://graph.microsoft.com/v1.0"
    gmail_token_url: str = "https://oauth2.googleapis.com/token"
    gmail_api_url: str = "https://gmail.googleapis.com/gmail/v1"

    # Polling scheduler
    scheduler_enabled: bool = True
    scheduler_tick_seconds: int = 60

    # Logging
    log_level: str = "INFO"
    log_file: str = "/app/data/imaging.log"

    # MCP
    mcp_enabled: bool = True

    class Config:
        env_prefix = "IMAGING_"
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
