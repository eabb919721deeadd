from pydantic_settings import BaseSettings
from dotenv import load_dotenv
from pathlib import Path


load_dotenv()


class Settings(BaseSettings):
    app_name: str = "Supplier Compliance API"
    debug: bool = False
    environment: str = "development"
    database_url: str = "sqlite:///./compliance.db"
    host: str = "127.0.0.1"
    port: int = 8000
    secret_key: str = ""
    access_token_expire_minutes: int = 60
    refresh_token_expire_minutes: int = 60 * 24 * 30
    allowed_hosts: str = ""
    log_file: Path = Path("logs/application.log")

    # Magic links
    magic_link_base_url: str = "http://localhost:3000"
    magic_link_expire_minutes: int = 15
    invitation_expire_minutes: int = 60 * 24 * 7
    magic_link_rate_limit_count: int = 3
    magic_link_rate_limit_window_minutes: int = 60

    # Requirement sweeps
    reminder_days_before: int = 3

    # Mail delivery. Empty URL means links are written to the log.
    mail_service_url: str = ""
    mail_api_key: str = ""
    mail_sender_name: str = "Supplier Compliance"
    mail_timeout_seconds: int = 30

    @property
    def is_development(self) -> bool:
        return self.environment == "development"


settings = Settings()

if not settings.secret_key:
    raise RuntimeError("Secret key not configured.")
