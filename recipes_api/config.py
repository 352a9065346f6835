"""Application settings.

Values come from the process environment, optionally seeded from a ``.env``
file in the working directory. ``Settings.validate`` is called by
``create_app`` before any backend is built so a misconfigured deployment
fails at startup instead of on the first request.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import List, Mapping, Optional

from dotenv import find_dotenv, load_dotenv

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

RECIPE_BACKENDS = ("memory", "firestore", "mongo")
SESSION_BACKENDS = ("memory", "redis")

_TRUE_VALUES = {"1", "true", "yes", "on"}


def load_environment(dotenv_path: Optional[str] = None) -> bool:
    """Load ``.env`` into ``os.environ`` without overriding existing values.

    Returns ``False`` and logs a warning when no file is found.
    """

    path = dotenv_path or find_dotenv(usecwd=True)
    if not path or not load_dotenv(path):
        logger.warning("No .env file found. Using system environment variables.")
        return False
    return True


def configure_logging(level: str = "INFO") -> None:
    """Attach a console handler to the root logger once."""

    root = logging.getLogger()
    if root.handlers:
        return

    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    handler = logging.StreamHandler()
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    root.addHandler(handler)


def _flag(value: str) -> bool:
    return value.strip().lower() in _TRUE_VALUES


def _number(env: Mapping[str, str], key: str, default: str, cast):
    raw = env.get(key, default)
    try:
        return cast(raw)
    except ValueError:
        raise ConfigurationError(f"{key} must be a number, got '{raw}'") from None


@dataclass
class Settings:
    """Runtime configuration for the recipes service."""

    recipes_backend: str = "memory"
    gcp_project: Optional[str] = None
    recipes_collection: str = "recipes"
    users_collection: str = "users"
    mongo_uri: Optional[str] = None
    mongo_database: Optional[str] = None

    session_backend: str = "memory"
    redis_url: str = "redis://localhost:6379/0"
    secret_key: Optional[str] = None
    auth_enabled: bool = True
    session_ttl: int = 3600

    cache_enabled: bool = False
    cache_ttl: int = 300

    store_timeout: Optional[float] = 5.0
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        """Read settings from ``env`` (defaults to ``os.environ``)."""

        env = os.environ if env is None else env
        timeout = _number(env, "STORE_TIMEOUT", "5.0", float)

        return cls(
            recipes_backend=env.get("RECIPES_BACKEND", "memory").strip().lower(),
            gcp_project=env.get("GCP_PROJECT") or None,
            recipes_collection=env.get("RECIPES_COLLECTION", "recipes"),
            users_collection=env.get("USERS_COLLECTION", "users"),
            mongo_uri=env.get("MONGO_URI") or None,
            mongo_database=env.get("MONGO_DATABASE") or None,
            session_backend=env.get("SESSION_BACKEND", "memory").strip().lower(),
            redis_url=env.get("REDIS_URL", "redis://localhost:6379/0"),
            secret_key=env.get("FLASK_SECRET_KEY") or None,
            auth_enabled=_flag(env.get("AUTH_ENABLED", "true")),
            session_ttl=_number(env, "SESSION_TTL", "3600", int),
            cache_enabled=_flag(env.get("CACHE_ENABLED", "false")),
            cache_ttl=_number(env, "CACHE_TTL", "300", int),
            store_timeout=timeout if timeout > 0 else None,
            log_level=env.get("LOG_LEVEL", "INFO"),
        )

    def validate(self) -> None:
        """Raise :class:`ConfigurationError` listing every problem found."""

        problems: List[str] = []

        if self.recipes_backend not in RECIPE_BACKENDS:
            problems.append(
                f"RECIPES_BACKEND must be one of {', '.join(RECIPE_BACKENDS)}, got '{self.recipes_backend}'"
            )
        if self.session_backend not in SESSION_BACKENDS:
            problems.append(
                f"SESSION_BACKEND must be one of {', '.join(SESSION_BACKENDS)}, got '{self.session_backend}'"
            )
        if self.recipes_backend == "firestore" and not self.gcp_project:
            problems.append("GCP_PROJECT is required when RECIPES_BACKEND=firestore")
        if self.recipes_backend == "mongo":
            if not self.mongo_uri:
                problems.append("MONGO_URI is required when RECIPES_BACKEND=mongo")
            if not self.mongo_database:
                problems.append("MONGO_DATABASE is required when RECIPES_BACKEND=mongo")
        if not self.secret_key:
            problems.append("FLASK_SECRET_KEY is required")
        if self.session_ttl <= 0:
            problems.append("SESSION_TTL must be positive")

        if problems:
            raise ConfigurationError("; ".join(problems))


__all__ = ["Settings", "configure_logging", "load_environment"]
