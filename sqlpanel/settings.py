import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

ISOLATION_LEVELS = ("READ UNCOMMITTED", "READ COMMITTED", "REPEATABLE READ", "SERIALIZABLE")

# mysql.connector refuses pools larger than this
MAX_POOL_SIZE = 32


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("true", "1", "yes", "on")


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}")


@dataclass
class Settings:
    host: str = "0.0.0.0"
    port: int = 3000
    pool_size: int = 10
    isolation_level: Optional[str] = "READ COMMITTED"
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    log_level: str = "INFO"
    log_file: Optional[str] = None
    dump_rows_per_insert: Optional[int] = None
    max_import_bytes: int = 50 * 1024 * 1024
    allow_raw_queries: bool = True

    # Optional server to connect to on startup
    mysql_host: Optional[str] = None
    mysql_port: int = 3306
    mysql_user: Optional[str] = None
    mysql_password: str = ""
    mysql_database: Optional[str] = None

    def __post_init__(self):
        if not 1 <= self.pool_size <= MAX_POOL_SIZE:
            raise ValueError(f"pool size must be between 1 and {MAX_POOL_SIZE}, got {self.pool_size}")
        if self.isolation_level:
            level = " ".join(self.isolation_level.upper().split())
            if level not in ISOLATION_LEVELS:
                raise ValueError(f"Unsupported isolation level: {self.isolation_level}")
            self.isolation_level = level
        else:
            self.isolation_level = None
        if self.dump_rows_per_insert is not None and self.dump_rows_per_insert < 1:
            raise ValueError("dump rows per insert must be positive")

    @property
    def autoconnect(self) -> bool:
        return bool(self.mysql_host and self.mysql_user)


def get_settings() -> Settings:
    """Build settings from the environment, loading a .env file first if present."""
    load_dotenv()

    origins = os.getenv("SQLPANEL_CORS_ORIGINS", "*")
    return Settings(
        host=os.getenv("SQLPANEL_HOST", "0.0.0.0"),
        port=_env_int("SQLPANEL_PORT", _env_int("PORT", 3000)),
        pool_size=_env_int("SQLPANEL_POOL_SIZE", 10),
        isolation_level=os.getenv("SQLPANEL_ISOLATION_LEVEL", "READ COMMITTED"),
        cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
        log_level=os.getenv("SQLPANEL_LOG_LEVEL", "INFO").upper(),
        log_file=os.getenv("SQLPANEL_LOG_FILE") or None,
        dump_rows_per_insert=_env_int("SQLPANEL_DUMP_ROWS_PER_INSERT", None),
        max_import_bytes=_env_int("SQLPANEL_MAX_IMPORT_BYTES", 50 * 1024 * 1024),
        allow_raw_queries=_env_bool("SQLPANEL_ALLOW_RAW_QUERIES", True),
        mysql_host=os.getenv("MYSQL_HOST") or None,
        mysql_port=_env_int("MYSQL_PORT", 3306),
        mysql_user=os.getenv("MYSQL_USER") or None,
        mysql_password=os.getenv("MYSQL_PASSWORD", ""),
        mysql_database=os.getenv("MYSQL_DATABASE") or None,
    )
