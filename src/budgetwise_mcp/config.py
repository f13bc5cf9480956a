"""Runtime configuration read from environment variables (and an optional .env)."""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

from dotenv import find_dotenv, load_dotenv

from .recurrence import CATCH_UP_MODES, SINGLE_STEP


DEFAULT_DB_PATH = Path.home() / ".cache" / "budgetwise-mcp" / "budgetwise.db"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class Settings:
    db_path: Path = DEFAULT_DB_PATH
    owner_id: str | None = None
    catch_up_mode: str = SINGLE_STEP
    max_catch_up_steps: int = 1000
    timer_enabled: bool = True
    timer_hour_utc: int = 0
    api_url: str | None = None
    api_token: str | None = None
    log_level: str = "INFO"

    @property
    def uses_remote_store(self) -> bool:
        return bool(self.api_url)


def _parse_bool(name: str, value: str) -> bool:
    text = value.strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ValueError(f"{name} must be a boolean, got {value!r}")


def _parse_int(name: str, value: str, minimum: int, maximum: int | None = None) -> int:
    try:
        number = int(value)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {value!r}") from e
    if number < minimum or (maximum is not None and number > maximum):
        bounds = f">= {minimum}" if maximum is None else f"between {minimum} and {maximum}"
        raise ValueError(f"{name} must be {bounds}, got {number}")
    return number


def load_settings(env: Mapping[str, str] | None = None) -> Settings:
    """Build Settings from the environment.

    Args:
        env: Mapping to read instead of os.environ. When omitted, a .env file
            in the working directory is loaded first (without overriding
            variables that are already set).

    Raises:
        ValueError: If a variable holds an invalid value.
    """
    if env is None:
        load_dotenv(find_dotenv(usecwd=True))
        env = os.environ

    catch_up_mode = env.get("BUDGETWISE_CATCH_UP_MODE", SINGLE_STEP).strip().lower()
    if catch_up_mode not in CATCH_UP_MODES:
        raise ValueError(
            f"BUDGETWISE_CATCH_UP_MODE must be one of {', '.join(CATCH_UP_MODES)}, "
            f"got {catch_up_mode!r}"
        )

    log_level = env.get("BUDGETWISE_LOG_LEVEL", "INFO").strip().upper()
    if not isinstance(logging.getLevelName(log_level), int):
        raise ValueError(f"BUDGETWISE_LOG_LEVEL is not a logging level: {log_level!r}")

    db_path = env.get("BUDGETWISE_DB_PATH")
    return Settings(
        db_path=Path(db_path).expanduser() if db_path else DEFAULT_DB_PATH,
        owner_id=env.get("BUDGETWISE_OWNER_ID") or None,
        catch_up_mode=catch_up_mode,
        max_catch_up_steps=_parse_int(
            "BUDGETWISE_MAX_CATCH_UP_STEPS", env.get("BUDGETWISE_MAX_CATCH_UP_STEPS", "1000"), 1
        ),
        timer_enabled=_parse_bool(
            "BUDGETWISE_TIMER_ENABLED", env.get("BUDGETWISE_TIMER_ENABLED", "true")
        ),
        timer_hour_utc=_parse_int(
            "BUDGETWISE_TIMER_HOUR_UTC", env.get("BUDGETWISE_TIMER_HOUR_UTC", "0"), 0, 23
        ),
        api_url=env.get("BUDGETWISE_API_URL") or None,
        api_token=env.get("BUDGETWISE_API_TOKEN") or None,
        log_level=log_level,
    )
