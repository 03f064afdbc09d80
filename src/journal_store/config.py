import os
from dataclasses import dataclass
from enum import Enum

DEFAULT_LOCAL_DB_PATH = "./data/journal-local.db"
AIRTABLE_API_ROOT = "https://api.airtable.com/v0"


class SchemaMode(str, Enum):
    """Schema mode of a running process. Flipped externally, never rolled back."""

    V1_ONLY = "v1_only"
    V2_ACTIVE = "v2_active"


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() == "true"


def _env_number(name: str, default: str, cast: type) -> int | float:
    raw = os.environ.get(name, default)
    try:
        return cast(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be a number, got {raw!r}") from exc


@dataclass(frozen=True)
class Config:
    database_url: str | None = None
    use_schema_v2: bool = False
    use_local_database: bool = False
    local_db_path: str = DEFAULT_LOCAL_DB_PATH
    airtable_api_key: str | None = None
    airtable_base_id: str | None = None
    airtable_base_url: str | None = None
    pool_min_size: int = 1
    pool_max_size: int = 20
    pool_timeout_seconds: float = 2.0
    auto_migrate: bool = True
    log_format: str = "json"

    @property
    def schema_mode(self) -> SchemaMode:
        return SchemaMode.V2_ACTIVE if self.use_schema_v2 else SchemaMode.V1_ONLY

    @property
    def remote_base_url(self) -> str | None:
        if self.airtable_base_url:
            return self.airtable_base_url.rstrip("/")
        if self.airtable_base_id:
            return f"{AIRTABLE_API_ROOT}/{self.airtable_base_id}"
        return None

    @classmethod
    def from_env(cls) -> "Config":
        database_url = (
            os.environ.get("DATABASE_URL", "").strip()
            or os.environ.get("POSTGRES_URL", "").strip()
            or None
        )

        return cls(
            database_url=database_url,
            use_schema_v2=_env_flag("USE_SCHEMA_V2"),
            use_local_database=_env_flag("USE_LOCAL_DATABASE"),
            local_db_path=os.environ.get("LOCAL_DB_PATH", DEFAULT_LOCAL_DB_PATH),
            airtable_api_key=os.environ.get("AIRTABLE_API_KEY") or None,
            airtable_base_id=os.environ.get("AIRTABLE_BASE_ID") or None,
            airtable_base_url=os.environ.get("AIRTABLE_BASE_URL") or None,
            pool_min_size=int(_env_number("JOURNAL_POOL_MIN_SIZE", "1", int)),
            pool_max_size=int(_env_number("JOURNAL_POOL_MAX_SIZE", "20", int)),
            pool_timeout_seconds=float(_env_number("JOURNAL_POOL_TIMEOUT", "2.0", float)),
            auto_migrate=_env_flag("JOURNAL_AUTO_MIGRATE", default=True),
            log_format=os.environ.get("JOURNAL_LOG_FORMAT", "json"),
        )
