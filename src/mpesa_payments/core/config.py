"""
Client configuration and the helpers that assemble it from the environment.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from .errors import ConfigError
from .logging import LOG_LEVELS

__all__ = [
    "BASE_URLS",
    "ConfigError",
    "MpesaConfig",
    "load_env_file",
    "load_mpesa_config",
]

BASE_URLS = {
    "sandbox": "https://apisandbox.safaricom.et",
    "production": "https://api.safaricom.et",
}

_PARAMETER_TO_ENV_KEY = {
    "environment": "MPESA_ENVIRONMENT",
    "api_key": "MPESA_API_KEY",
    "secret_key": "MPESA_SECRET_KEY",
    "timeout_millis": "MPESA_TIMEOUT_MILLIS",
    "max_attempts": "MPESA_MAX_ATTEMPTS",
    "log_level": "MPESA_LOG_LEVEL",
    "backoff_base_millis": "MPESA_BACKOFF_BASE_MILLIS",
    "token_refresh_margin_seconds": "MPESA_TOKEN_REFRESH_MARGIN_SECONDS",
    "base_url": "MPESA_BASE_URL",
}


def _read_env_file(path: Path) -> Dict[str, str]:
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return {}

    values: Dict[str, str] = {}
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if line.startswith("export "):
            line = line[len("export "):].lstrip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in "'\"":
            value = value[1:-1]
        values[key.strip()] = value
    return values


def load_env_file(path: str = ".env") -> Dict[str, str]:
    """Parse ``path`` into a dict. A missing file yields an empty dict."""
    return _read_env_file(Path(path))


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _int_setting(values: Mapping[str, str], key: str, default: int) -> int:
    raw = values.get(key)
    if raw is None or raw == "":
        return default
    try:
        number = int(raw)
    except ValueError as exc:
        raise ConfigError(f"{key} must be an integer, got '{raw}'") from exc
    return number


@dataclass(frozen=True)
class MpesaConfig:
    environment: str
    api_key: str
    secret_key: str
    timeout_millis: int = 5000
    max_attempts: int = 3
    log_level: str = "error"
    backoff_base_millis: int = 100
    token_refresh_margin_seconds: int = 0
    base_url_override: Optional[str] = None

    def __post_init__(self) -> None:
        if self.environment not in BASE_URLS:
            raise ConfigError(
                f"environment must be 'sandbox' or 'production', got '{self.environment}'"
            )
        if not self.api_key:
            raise ConfigError("api_key must not be empty")
        if not self.secret_key:
            raise ConfigError("secret_key must not be empty")
        if self.timeout_millis <= 0:
            raise ConfigError("timeout_millis must be greater than zero")
        if self.max_attempts < 1:
            raise ConfigError("max_attempts must be at least 1")
        if self.backoff_base_millis < 0:
            raise ConfigError("backoff_base_millis must not be negative")
        if self.token_refresh_margin_seconds < 0:
            raise ConfigError("token_refresh_margin_seconds must not be negative")
        if self.log_level not in LOG_LEVELS:
            raise ConfigError(
                f"log_level must be one of {', '.join(LOG_LEVELS)}, got '{self.log_level}'"
            )

    @property
    def base_url(self) -> str:
        return (self.base_url_override or BASE_URLS[self.environment]).rstrip("/")

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_millis / 1000.0

    @property
    def backoff_base_seconds(self) -> float:
        return self.backoff_base_millis / 1000.0

    def __repr__(self) -> str:
        return (
            f"MpesaConfig(environment={self.environment!r}, api_key={self.api_key!r}, "
            f"secret_key='***', timeout_millis={self.timeout_millis}, "
            f"max_attempts={self.max_attempts}, log_level={self.log_level!r})"
        )

    @classmethod
    def from_mapping(cls, values: Mapping[str, str]) -> "MpesaConfig":
        api_key = values.get("MPESA_API_KEY")
        if not api_key:
            raise ConfigError("MPESA_API_KEY must be provided")
        secret_key = values.get("MPESA_SECRET_KEY")
        if not secret_key:
            raise ConfigError("MPESA_SECRET_KEY must be provided")

        return cls(
            environment=values.get("MPESA_ENVIRONMENT", "sandbox").strip().lower(),
            api_key=api_key.strip(),
            secret_key=secret_key.strip(),
            timeout_millis=_int_setting(values, "MPESA_TIMEOUT_MILLIS", 5000),
            max_attempts=_int_setting(values, "MPESA_MAX_ATTEMPTS", 3),
            log_level=values.get("MPESA_LOG_LEVEL", "error").strip().lower(),
            backoff_base_millis=_int_setting(values, "MPESA_BACKOFF_BASE_MILLIS", 100),
            token_refresh_margin_seconds=_int_setting(
                values, "MPESA_TOKEN_REFRESH_MARGIN_SECONDS", 0
            ),
            base_url_override=values.get("MPESA_BASE_URL") or None,
        )

    @classmethod
    def from_env(
        cls,
        *,
        env_file: Optional[str] = ".env",
        overrides: Optional[Mapping[str, str]] = None,
        base: Optional[Mapping[str, str]] = None,
        **parameters: Any,
    ) -> "MpesaConfig":
        """
        Layer ``base`` (default :data:`os.environ`), the ``.env`` file and
        ``overrides``; keyword parameters such as ``api_key=...`` win over all.

        Values from the file never replace keys already present in ``base``.
        """
        merged: Dict[str, str] = dict(os.environ if base is None else base)
        if env_file is not None:
            for key, value in load_env_file(env_file).items():
                merged.setdefault(key, value)
        if overrides:
            merged.update(overrides)

        for name, value in parameters.items():
            if value is None:
                continue
            try:
                env_key = _PARAMETER_TO_ENV_KEY[name]
            except KeyError as exc:
                raise TypeError(f"Unknown M-Pesa parameter '{name}'") from exc
            merged[env_key] = _stringify(value)

        return cls.from_mapping(merged)


def load_mpesa_config(
    *,
    env_file: Optional[str] = ".env",
    overrides: Optional[Mapping[str, str]] = None,
    base: Optional[Mapping[str, str]] = None,
    environment: Optional[str] = None,
    api_key: Optional[str] = None,
    secret_key: Optional[str] = None,
    timeout_millis: Optional[int | str] = None,
    max_attempts: Optional[int | str] = None,
    log_level: Optional[str] = None,
    backoff_base_millis: Optional[int | str] = None,
    token_refresh_margin_seconds: Optional[int | str] = None,
    base_url: Optional[str] = None,
) -> MpesaConfig:
    """
    Convenience wrapper that mirrors :meth:`MpesaConfig.from_env`.

    The configuration can come from environment variables, a ``.env`` file,
    explicit keyword arguments, or any combination of the three.
    """
    return MpesaConfig.from_env(
        env_file=env_file,
        overrides=overrides,
        base=base,
        environment=environment,
        api_key=api_key,
        secret_key=secret_key,
        timeout_millis=timeout_millis,
        max_attempts=max_attempts,
        log_level=log_level,
        backoff_base_millis=backoff_base_millis,
        token_refresh_margin_seconds=token_refresh_margin_seconds,
        base_url=base_url,
    )
