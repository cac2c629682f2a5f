""" Runtime settings for the declaration server, read from .env / environment via python-dotenv."""
import os
import dotenv
import logging
from dataclasses import dataclass
from typing import Mapping, Optional

logger = logging.getLogger(__name__)

ENV_PREFIX = "INTERFACE_MCP_"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class Settings:
    """ Knobs for hidden-predicate evaluation, coercion and the HTTP server. """
    hidden_timeout_s: float = 1.0
    hidden_slow_warn_s: float = 0.1
    hidden_error_default: str = "visible"
    flatten_routers: Optional[bool] = None
    allow_non_finite: bool = False
    log_level: str = "INFO"
    host: str = "127.0.0.1"
    port: int = 8085

    def __post_init__(self):
        if self.hidden_error_default not in ("visible", "hidden"):
            raise ValueError(
                f"hidden_error_default must be 'visible' or 'hidden' (got {self.hidden_error_default!r})")
        if self.hidden_timeout_s <= 0:
            raise ValueError(f"hidden_timeout_s must be positive (got {self.hidden_timeout_s})")


def _as_bool(key: str, value: str) -> bool:
    token = value.strip().lower()
    if token in _TRUE:
        return True
    if token in _FALSE:
        return False
    raise ValueError(f"{key} must be a boolean (got {value!r})")


def settings_from_mapping(values: Mapping[str, str]) -> Settings:
    """
    Build Settings from INTERFACE_MCP_* keys.

    Args:
        values: Environment-like mapping. Keys without the prefix are ignored.

    Returns:
        Settings with defaults for every key not present.
    """
    def get(name: str) -> Optional[str]:
        raw = values.get(ENV_PREFIX + name)
        return raw if raw not in (None, "") else None

    kwargs = {}
    if (v := get("HIDDEN_TIMEOUT_S")) is not None:
        kwargs["hidden_timeout_s"] = float(v)
    if (v := get("HIDDEN_SLOW_WARN_S")) is not None:
        kwargs["hidden_slow_warn_s"] = float(v)
    if (v := get("HIDDEN_ERROR_DEFAULT")) is not None:
        kwargs["hidden_error_default"] = v.strip().lower()
    if (v := get("FLATTEN_ROUTERS")) is not None:
        kwargs["flatten_routers"] = _as_bool(ENV_PREFIX + "FLATTEN_ROUTERS", v)
    if (v := get("ALLOW_NON_FINITE")) is not None:
        kwargs["allow_non_finite"] = _as_bool(ENV_PREFIX + "ALLOW_NON_FINITE", v)
    if (v := get("LOG_LEVEL")) is not None:
        kwargs["log_level"] = v.strip().upper()
    if (v := get("HOST")) is not None:
        kwargs["host"] = v
    if (v := get("PORT")) is not None:
        kwargs["port"] = int(v)
    return Settings(**kwargs)


def load_settings(env_file: str = ".env", *, use_dotenv: bool = True) -> Settings:
    """ Load settings from a .env file (if one is found) and the process environment.
        Environment variables already set win over the .env file.
    """
    if use_dotenv:
        env_path = dotenv.find_dotenv(env_file, usecwd=True)
        if env_path:
            dotenv.load_dotenv(env_path, override=False)
            logger.info("Loaded settings from %s", env_path)
    try:
        return settings_from_mapping(os.environ)
    except ValueError as e:
        logger.error(f"Invalid {ENV_PREFIX}* setting: {e}")
        raise
