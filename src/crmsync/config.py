from typing import List, Optional

from pydantic_settings import BaseSettings

THRICE_DAILY = "0 8,14,20 * * *"
HOURLY = "0 * * * *"


class Settings(BaseSettings):
    database_url: str = "sqlite:///./crmsync.db"

    # Remote CRM credentials; pipelines refuse to start without all three
    remote_base_url: str = ""
    remote_api_token: str = ""
    remote_group_id: str = ""

    cron_timezone: str = "America/Sao_Paulo"
    enable_cron: bool = False

    sales_reps_sync_schedule: str = THRICE_DAILY
    units_sync_schedule: str = THRICE_DAILY
    funnels_sync_schedule: str = THRICE_DAILY
    loss_reasons_sync_schedule: str = THRICE_DAILY
    funnel_columns_sync_schedule: str = THRICE_DAILY
    opportunities_sync_schedule: str = HOURLY

    page_size: int = 100
    page_delay_seconds: float = 0.1
    branch_delay_seconds: float = 0.1
    opportunity_status_filter: List[str] = ["open", "gain", "lost"]
    parent_department_id: int = 85

    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
