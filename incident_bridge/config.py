"""Application configuration"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings"""

    # Database (mapping repository)
    database_url: str = "sqlite:///./incidentbridge.db"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # Scheduler
    scheduler_enabled: bool = True
    sync_interval_minutes: int = 10

    # Internal system (Spira)
    spira_base_url: str = "http://localhost/Spira"
    spira_login: str = ""
    spira_api_key: str = ""

    # External system (Redmine)
    # If only a login is given it is sent as the Redmine API key.
    redmine_url: str = "http://localhost:3000"
    redmine_login: str = ""
    redmine_password: str | None = None

    # Sync behavior
    time_offset_hours: int = 0
    auto_map_users: bool = False
    create_new_items_in_spira: bool = True
    create_new_items_in_redmine: bool = True
    # Appended to redmine_url to build the link stored on the Spira incident.
    # Leave empty to skip adding link-back documents.
    external_issue_url_template: str = "/issues/{key}"

    # Reserved slots, currently unused
    custom_03: str | None = None
    custom_04: str | None = None
    custom_05: str | None = None

    http_timeout_seconds: float = 30.0

    # Logging
    log_level: str = "INFO"

    # Auth (optional)
    # When enabled, all routes are protected by HTTP Basic auth, except for /health.
    auth_enabled: bool = False
    auth_username: str | None = None
    auth_password: str | None = None

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()
