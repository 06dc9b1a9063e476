"""
Application configuration

Loaded once per process by `load_settings()` and passed explicitly to every
component. Sources, highest priority first: keyword arguments, environment
(`NPS_` prefix), `.env`, then the first JSON config file found on the search
path.
"""
from pathlib import Path
from typing import Annotated, List, Optional, Tuple, Type, Union

from pydantic import AliasChoices, Field, computed_field, field_validator
from pydantic_settings import (
    BaseSettings,
    JsonConfigSettingsSource,
    NoDecode,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)
from sqlalchemy.engine import URL

PACKAGE_DIR = Path(__file__).resolve().parent.parent
DEFAULT_RULESET_PATH = PACKAGE_DIR / "rulesets"

# Searched in order; the first file found wins over later ones.
CONFIG_SEARCH_PATHS = (
    "config.json",
    "/etc/nps/config.json",
    "/etc/nps.json",
    "/usr/local/etc/nps.json",
)

CommaList = Annotated[List[str], NoDecode]


class Settings(BaseSettings):
    """NPS configuration"""

    model_config = SettingsConfigDict(
        env_prefix="NPS_",
        env_file=".env",
        env_file_encoding="utf-8",
        # later files override earlier ones, so the highest priority goes last
        json_file=list(reversed(CONFIG_SEARCH_PATHS)),
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    debug: bool = Field(default=False, description="Expose error details in API responses")
    log_level: str = Field(default="INFO", description="Minimum log level")
    log_dir: Optional[str] = Field(default="logs", description="Directory for rotating log files; empty disables")

    # Queue store
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        validation_alias=AliasChoices("redis_url", "NPS_REDIS_URL", "REDIS_URL"),
        description="Redis connection URL",
    )
    redis_pool_size: int = Field(default=10, description="Redis connection pool size")
    work_queue: str = Field(default="work", description="Queue holding archive paths to scan")
    result_queue: str = Field(default="results", description="Queue holding findings to persist")
    queue_max_retries: int = Field(
        default=3,
        ge=0,
        description="Failures tolerated before an item is dead-lettered",
    )
    queue_lease_timeout_seconds: int = Field(
        default=300,
        gt=0,
        description="Age after which a leased item is considered abandoned",
    )
    queue_dequeue_timeout_seconds: int = Field(
        default=10,
        ge=1,
        description="Blocking pop timeout; bounds how long a worker waits before checking for shutdown",
    )
    queue_reap_interval_seconds: float = Field(default=30 * 60, gt=0, description="Reaper tick in the master")

    # Staging
    staging_path: str = Field(default="/tmp/nps-staging", description="Root directory for extracted archives")

    # Plugins
    plugins: CommaList = Field(default=["grep"], description="Registered plugins to run in each scanner")
    ruleset_path: str = Field(default=str(DEFAULT_RULESET_PATH), description="Directory of rule-set documents")
    result_batch_size: int = Field(default=10, ge=1, description="Findings per result queue item")
    grep_max_line_length: int = Field(default=1024, ge=1, description="Longer lines are skipped (bytes)")
    grep_max_excerpt_length: int = Field(default=128, ge=0, description="Excerpt truncation (bytes)")
    grep_excluded_path_segments: CommaList = Field(
        default=["node_modules"],
        description="Files under any of these path segments are not scanned",
    )

    # Process pool
    scanner_processes: int = Field(default=1, ge=0, description="Scanner workers forked by the master")
    reporter_processes: int = Field(default=1, ge=0, description="Reporter workers forked by the master")
    enable_ui: bool = Field(default=False, description="Fork one UI worker")
    restart_max_per_window: int = Field(default=5, ge=1, description="Respawns per role allowed in one window")
    restart_window_seconds: float = Field(default=60.0, gt=0, description="Rolling window for the respawn cap")
    shutdown_grace_seconds: float = Field(default=15.0, ge=0, description="Wait before killing children")

    # UI
    ui_host: str = Field(default="127.0.0.1", description="UI bind address")
    ui_port: int = Field(default=8080, description="UI port")
    ui_static_path: Optional[str] = Field(default=None, description="Static UI bundle served at /")

    # Finding store
    postgres_host: str = Field(default="localhost")
    postgres_port: int = Field(default=5432)
    postgres_user: str = Field(default="postgres")
    postgres_password: str = Field(default="postgres")
    postgres_database: str = Field(default="nps")
    database_dsn: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("database_dsn", "NPS_DATABASE_URL", "DATABASE_URL"),
        description="Full SQLAlchemy URL; overrides the postgres_* fields",
    )
    database_echo: bool = Field(default=False, description="Log SQL statements")
    database_pool_size: int = Field(default=5, description="Database connection pool size")

    @field_validator("plugins", "grep_excluded_path_segments", mode="before")
    @classmethod
    def parse_comma_list(cls, v: Union[str, List[str]]) -> List[str]:
        """Accept a comma-separated string or a list."""
        if isinstance(v, str):
            return [item.strip() for item in v.split(",") if item.strip()]
        return v

    @computed_field
    @property
    def database_url(self) -> str:
        """Async SQLAlchemy URL for the finding store."""
        if self.database_dsn:
            return self.database_dsn
        return URL.create(
            "postgresql+asyncpg",
            username=self.postgres_user,
            password=self.postgres_password,
            host=self.postgres_host,
            port=self.postgres_port,
            database=self.postgres_database,
        ).render_as_string(hide_password=False)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            JsonConfigSettingsSource(settings_cls),
            file_secret_settings,
        )


def load_settings(**overrides) -> Settings:
    """Build the process configuration. Call once at start-up."""
    return Settings(**overrides)
