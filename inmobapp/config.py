from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    environment: str = "development"

    # Apps Script web app (JSON POST endpoint)
    webapp_url: str = ""
    api_key: str = ""

    # Published spreadsheet exports, used when webapp_url is not configured
    roster_csv_url: str = ""
    units_csv_url: str = ""

    # Fetch client
    api_retries: int = 2
    retry_backoff: float = 0.5

    # Backend action names (they changed between script revisions)
    login_action: str = "login"
    assignments_action: str = "getAssignments"
    start_process_action: str = "startProcess"
    complete_process_action: str = "completeProcess"
    acta_status_action: str = "getActaStatus"
    health_action: str = "health"

    # Agenda
    date_formats: list[str] = ["%d/%m/%Y", "%d-%m-%Y", "%m/%d/%Y", "%Y/%m/%d"]  # day-first (Chile)
    upcoming_window_days: int = 14

    # Acta payload
    default_comuna: str = "Santiago"

    # Device identifier file, sent with startProcess/completeProcess
    device_id_path: str = ".inmobapp_device"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


_settings: Settings | None = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    """Force reload settings from .env."""
    global _settings
    _settings = None
    return get_settings()
