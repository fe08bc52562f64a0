import os
import shlex
import sys
from dataclasses import dataclass, field
from typing import List
from dotenv import load_dotenv

load_dotenv()


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


def _default_engine_command() -> str:
    # The bundled reference engine, run with the current interpreter
    return f"{shlex.quote(sys.executable)} -m inventory_cli"


@dataclass
class Settings:
    # Application settings
    app_name: str = os.getenv("APP_NAME", "Library Circulation Service")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    debug: bool = _env_flag("DEBUG", "False")
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()

    # API settings
    api_host: str = os.getenv("API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("API_PORT", "8000"))

    # Database settings
    database_file: str = os.getenv("LIBRARY_DB_FILE", "library.db")

    # Inventory engine settings
    engine_command: str = os.getenv("INVENTORY_ENGINE_CMD", _default_engine_command())
    engine_data_file: str = os.getenv("INVENTORY_DATA_FILE", "books.txt")

    # Serialize issue/return per item id (off reproduces the check-then-act race)
    serialize_issues: bool = _env_flag("SERIALIZE_ISSUES", "True")

    cors_origins: List[str] = field(default_factory=lambda: ["*"])

    @property
    def engine_argv(self) -> List[str]:
        """The engine command split into an argv list."""
        return shlex.split(self.engine_command)


settings = Settings()
