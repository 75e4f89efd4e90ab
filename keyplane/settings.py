"""Settings for keyplane.

Contract:
- Inputs: Environment variables prefixed with KEYPLANE_, optional .env file
- Outputs: Validated settings and the config store they describe
- Side Effects: create_config_store creates the home directory
"""

from pathlib import Path
from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from keyplane.base import ConfigStore
from keyplane.impl.files import create_file_config_store, ensure_dir
from keyplane.impl.sql import create_sql_config_store

DEFAULT_SEED_ROOT = Path(__file__).parent / "seeds"


class Settings(BaseSettings):
    """Where keyplane reads seed data and keeps device state.

    Attributes:
        home: Root for everything keyplane writes (default: ~/.keyplane)
        seed_root: Read-only seed tree (default: the seeds shipped with keyplane)
        data_root: Writable data tree (default: <home>/data)
        backend: "file" keeps state as JSON files, "sql" in a database
        database_url: SQLAlchemy URL for the sql backend
            (default: sqlite file <home>/keyplane.db)
        log_level: Logging level name

    Example:
        >>> settings = Settings(home="/tmp/kp")
        >>> assert settings.state_root() == Path("/tmp/kp/data")
    """

    model_config = SettingsConfigDict(
        env_prefix="KEYPLANE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        validate_default=True,
    )

    home: Path = Path("~/.keyplane")
    seed_root: Path = DEFAULT_SEED_ROOT
    data_root: Path | None = None
    backend: Literal["file", "sql"] = "file"
    database_url: str | None = None
    log_level: str = "info"

    @field_validator("home", "seed_root", "data_root")
    @classmethod
    def expand_and_resolve_path(cls, v: Path | None) -> Path | None:
        if v is None:
            return None
        return Path(v).expanduser().resolve()

    def state_root(self) -> Path:
        return self.data_root if self.data_root is not None else self.home / "data"

    def sql_url(self) -> str:
        if self.database_url is not None:
            return self.database_url
        return f"sqlite:///{self.home / 'keyplane.db'}"


def create_config_store(settings: Settings) -> ConfigStore:
    ensure_dir(settings.home)
    if settings.backend == "sql":
        engine = create_engine(settings.sql_url())
        return create_sql_config_store(sessionmaker(bind=engine), settings.seed_root)
    return create_file_config_store(settings.seed_root, settings.state_root())
