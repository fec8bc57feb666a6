from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # `.env.prod` takes priority over `.env`
        env_file=(".env", ".env.prod")
    )

    # Scoring oracle
    oracle_url: str = "https://ahmadmahmood447.pythonanywhere.com/api"
    oracle_timeout_seconds: float = 30.0

    # Upload limits
    max_candidates_per_batch: int = 50
    max_upload_bytes: int = 10 * 1024 * 1024
    upload_tmp_dir: Optional[str] = None  # None -> system temp dir

    # A candidate that fails extraction still consumes its CV slot when True
    charge_unreadable_candidates: bool = True

    ranking_results_limit: int = 50

    # Auth (JWT bearer). Disabled for local dev.
    auth_enabled: bool = False
    jwt_secret: Optional[str] = None
    jwt_algorithm: str = "HS256"
    local_user_email: str = "local@example.com"

    # Plan catalogue
    default_plan_name: Optional[str] = "Freemium"
    seed_plans_on_startup: bool = True


@lru_cache()
def get_settings() -> Settings:
    return Settings()
