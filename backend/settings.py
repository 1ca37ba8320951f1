"""
Runtime configuration read from the environment (and a .env file, if present).
"""
from __future__ import annotations
import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str) -> list[str]:
    return [part.strip() for part in os.getenv(name, "").split(",") if part.strip()]


@dataclass
class Settings:
    log_level: str = "INFO"
    checker: str = "slen"
    include_tests: bool = True
    ignore_dirs: list[str] = field(default_factory=list)


def get_settings() -> Settings:
    return Settings(
        log_level=os.getenv("LENCHECK_LOG_LEVEL", "INFO").upper(),
        checker=os.getenv("LENCHECK_CHECKER", "slen").strip().lower(),
        include_tests=_env_bool("LENCHECK_INCLUDE_TESTS", True),
        ignore_dirs=_env_list("LENCHECK_IGNORE_DIRS"),
    )
