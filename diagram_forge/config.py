"""Configuration for the content-safety pipeline.

Every component receives its own section at construction time.  Values come
from an optional YAML file and are then overridden by ``DF_*`` environment
variables, e.g.::

    moderation_enabled: true
    moderator:
      auto_approve_threshold: 0.85
    injection_detector:
      action: log_only
    rate_limits:
      redis_url: redis://localhost:6379/0
      moderation_submit_minute:
        limit: 3
        window_seconds: 60
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml

CONFIG_PATH_ENV = "DIAGRAM_FORGE_CONFIG"


class ConfigError(ValueError):
    """Raised when a configuration value cannot be interpreted."""


class InjectionAction(str, Enum):
    """What the caller does when the injection detector fires."""

    flag_for_review = "flag_for_review"
    reject = "reject"
    log_only = "log_only"


# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------


@dataclass
class SanitizerConfig:
    enabled: bool = True
    strip_urls: bool = True
    diagram_source_enabled: bool = True


@dataclass
class InjectionDetectorConfig:
    enabled: bool = True
    action: InjectionAction = InjectionAction.flag_for_review

    def __post_init__(self) -> None:
        if isinstance(self.action, str) and not isinstance(self.action, InjectionAction):
            try:
                self.action = InjectionAction(self.action)
            except ValueError:
                raise ConfigError(
                    f"Invalid injection action '{self.action}'. "
                    f"Expected one of: {', '.join(a.value for a in InjectionAction)}"
                ) from None


@dataclass
class ModeratorConfig:
    enabled: bool = True
    auto_approve_threshold: float = 0.8
    model: str = ""
    timeout: float = 30.0
    max_tokens: int = 512

    def __post_init__(self) -> None:
        if not 0.0 <= self.auto_approve_threshold <= 1.0:
            raise ConfigError(
                f"auto_approve_threshold must be within [0, 1], got {self.auto_approve_threshold}"
            )
        if self.timeout <= 0:
            raise ConfigError(f"timeout must be positive, got {self.timeout}")


@dataclass
class RateLimitRule:
    """``limit`` hits allowed per fixed window of ``window_seconds``."""

    limit: int
    window_seconds: int

    def __post_init__(self) -> None:
        if self.limit < 1 or self.window_seconds < 1:
            raise ConfigError(
                f"Rate limit rule needs positive limit and window, got {self.limit}/{self.window_seconds}s"
            )


@dataclass
class RateLimitConfig:
    content_create_minute: RateLimitRule = field(
        default_factory=lambda: RateLimitRule(limit=10, window_seconds=60)
    )
    content_create_day: RateLimitRule = field(
        default_factory=lambda: RateLimitRule(limit=100, window_seconds=86_400)
    )
    ip_minute: RateLimitRule = field(
        default_factory=lambda: RateLimitRule(limit=5, window_seconds=60)
    )
    moderation_submit_minute: RateLimitRule = field(
        default_factory=lambda: RateLimitRule(limit=5, window_seconds=60)
    )
    redis_url: str = ""


@dataclass
class ContentSafetyConfig:
    """Top-level configuration tree."""

    moderation_enabled: bool = True
    sanitizer: SanitizerConfig = field(default_factory=SanitizerConfig)
    injection_detector: InjectionDetectorConfig = field(default_factory=InjectionDetectorConfig)
    moderator: ModeratorConfig = field(default_factory=ModeratorConfig)
    rate_limits: RateLimitConfig = field(default_factory=RateLimitConfig)
    data_dir: str = ""


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

# env var -> (section, key, parser)
_ENV_OVERRIDES: dict[str, tuple[Optional[str], str, str]] = {
    "DF_MODERATION_ENABLED": (None, "moderation_enabled", "bool"),
    "DF_DATA_DIR": (None, "data_dir", "str"),
    "DF_MODERATOR_ENABLED": ("moderator", "enabled", "bool"),
    "DF_AUTO_APPROVE_THRESHOLD": ("moderator", "auto_approve_threshold", "float"),
    "DF_MODERATION_MODEL": ("moderator", "model", "str"),
    "DF_MODERATION_TIMEOUT": ("moderator", "timeout", "float"),
    "DF_INJECTION_DETECTOR_ENABLED": ("injection_detector", "enabled", "bool"),
    "DF_INJECTION_ACTION": ("injection_detector", "action", "str"),
    "DF_SANITIZER_ENABLED": ("sanitizer", "enabled", "bool"),
    "DF_STRIP_URLS": ("sanitizer", "strip_urls", "bool"),
    "DF_DIAGRAM_SOURCE_SANITIZER_ENABLED": ("sanitizer", "diagram_source_enabled", "bool"),
    "DF_RATE_LIMIT_REDIS_URL": ("rate_limits", "redis_url", "str"),
}

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}

_KIND_NAMES = {"bool": "a boolean", "int": "an integer", "float": "a number", "str": "a string"}


def _parse_env_value(name: str, raw: str, kind: str) -> Any:
    if kind == "bool":
        lowered = raw.strip().lower()
        if lowered in _TRUE:
            return True
        if lowered in _FALSE:
            return False
        raise ConfigError(f"{name} must be a boolean, got '{raw}'")
    if kind in ("int", "float"):
        try:
            return int(raw) if kind == "int" else float(raw)
        except ValueError:
            raise ConfigError(f"{name} must be {_KIND_NAMES[kind]}, got '{raw}'") from None
    return raw


def _coerce(name: str, value: Any, kind: str) -> Any:
    """Check *value* against a field's declared type.

    Strings are parsed the same way as environment overrides, so a quoted
    YAML number is accepted.  Anything else of the wrong type is a
    :class:`ConfigError`.
    """
    if kind not in _KIND_NAMES:
        return value
    if isinstance(value, str):
        return _parse_env_value(name, value, kind)
    if kind == "bool" and isinstance(value, bool):
        return value
    if kind in ("int", "float") and isinstance(value, (int, float)) and not isinstance(value, bool):
        if kind == "float":
            return float(value)
        if float(value).is_integer():
            return int(value)
    raise ConfigError(f"{name} must be {_KIND_NAMES[kind]}, got {value!r}")


def _mapping(name: str, data: Any) -> Mapping[str, Any]:
    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise ConfigError(f"'{name}' must be a mapping")
    return data


def _section(cls: type, name: str, data: Any) -> Any:
    """Build a section dataclass, ignoring unknown keys and empty values."""
    data = _mapping(name, data)
    kinds = {f.name: f.type for f in fields(cls)}
    return cls(**{
        k: _coerce(f"{name}.{k}", v, kinds[k])
        for k, v in data.items()
        if k in kinds and v is not None
    })


def _rate_limits(data: Any) -> RateLimitConfig:
    data = dict(_mapping("rate_limits", data))
    redis_url = data.pop("redis_url", None)
    config = RateLimitConfig(redis_url=_coerce("rate_limits.redis_url", redis_url or "", "str"))
    for name, rule in data.items():
        if not hasattr(config, name):
            raise ConfigError(f"Unknown rate limit '{name}'")
        if not isinstance(rule, Mapping):
            raise ConfigError(f"Rate limit '{name}' must be a mapping")
        current: RateLimitRule = getattr(config, name)
        setattr(
            config,
            name,
            RateLimitRule(
                limit=_coerce(f"rate_limits.{name}.limit", rule.get("limit", current.limit), "int"),
                window_seconds=_coerce(
                    f"rate_limits.{name}.window_seconds",
                    rule.get("window_seconds", current.window_seconds),
                    "int",
                ),
            ),
        )
    return config


def config_from_dict(data: Mapping[str, Any]) -> ContentSafetyConfig:
    """Build a :class:`ContentSafetyConfig` from a plain mapping.

    Raises :class:`ConfigError` for values of the wrong type.
    """
    enabled = data.get("moderation_enabled")
    return ContentSafetyConfig(
        moderation_enabled=True if enabled is None else _coerce("moderation_enabled", enabled, "bool"),
        sanitizer=_section(SanitizerConfig, "sanitizer", data.get("sanitizer")),
        injection_detector=_section(InjectionDetectorConfig, "injection_detector", data.get("injection_detector")),
        moderator=_section(ModeratorConfig, "moderator", data.get("moderator")),
        rate_limits=_rate_limits(data.get("rate_limits")),
        data_dir=_coerce("data_dir", data.get("data_dir") or "", "str"),
    )


def load_config(
    path: str | Path | None = None,
    environ: Optional[Mapping[str, str]] = None,
) -> ContentSafetyConfig:
    """Load configuration from YAML (if any) and apply environment overrides."""
    env = os.environ if environ is None else environ
    path = path or env.get(CONFIG_PATH_ENV)

    data: dict[str, Any] = {}
    if path:
        try:
            with open(path) as f:
                loaded = yaml.safe_load(f)
        except FileNotFoundError:
            raise ConfigError(f"Config file not found: {path}") from None
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from None
        if loaded is not None and not isinstance(loaded, dict):
            raise ConfigError(f"Config file {path} must contain a mapping")
        data = loaded or {}

    for name, (section, key, kind) in _ENV_OVERRIDES.items():
        if name not in env:
            continue
        value = _parse_env_value(name, env[name], kind)
        if section is None:
            data[key] = value
        else:
            if not isinstance(data.get(section), dict):
                data[section] = {}
            data[section][key] = value

    return config_from_dict(data)
