from __future__ import annotations

import enum
import os
from dataclasses import dataclass, field
from typing import Dict, Iterable, Mapping


class ConfigurationError(ValueError):
    """Invalid plugin or renderer configuration, raised before any test runs."""


class RendererChoice(str, enum.Enum):
    CONSOLE = "console"
    WARNINGS_NG = "warnings-ng"

    @classmethod
    def parse(cls, value: str) -> "RendererChoice":
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            known = ", ".join(c.value for c in cls)
            raise ConfigurationError(f"unknown renderer {value!r} (expected one of: {known})") from None


DISABLE_ENV = "PYTEST_SPEEDTRAP"


@dataclass(frozen=True)
class SpeedTrapConfig:
    enabled: bool = True
    slow_threshold: int = 500
    report_length: int = 10
    stop_on_slow: bool = False
    show_stats: bool = True
    renderer: RendererChoice = RendererChoice.CONSOLE
    renderer_options: Mapping[str, str] = field(default_factory=dict)
    verbose: bool = False

    @classmethod
    def from_options(cls, config) -> "SpeedTrapConfig":
        # pytest Config object contains the option values; environment wins
        opt = config.option
        enabled = os.getenv(DISABLE_ENV) != "disabled"
        slow_threshold = _as_int(
            "slow threshold", _env_or("SPEEDTRAP_SLOW_THRESHOLD", getattr(opt, "speedtrap_slow_threshold", 500))
        )
        report_length = _as_int(
            "report length", _env_or("SPEEDTRAP_REPORT_LENGTH", getattr(opt, "speedtrap_report_length", 10))
        )
        stop_on_slow = _as_bool(_env_or("SPEEDTRAP_STOP_ON_SLOW", getattr(opt, "speedtrap_stop_on_slow", False)))
        renderer = RendererChoice.parse(_env_or("SPEEDTRAP_RENDERER", getattr(opt, "speedtrap_renderer", "console")))
        renderer_options = parse_renderer_options(getattr(opt, "speedtrap_renderer_options", None) or [])
        return cls(
            enabled=enabled,
            slow_threshold=slow_threshold,
            report_length=report_length,
            stop_on_slow=stop_on_slow,
            show_stats=not getattr(opt, "speedtrap_hide_stats", False),
            renderer=renderer,
            renderer_options=renderer_options,
            verbose=bool(getattr(opt, "speedtrap_verbose", False)),
        )


def parse_renderer_options(pairs: Iterable[str]) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for pair in pairs:
        key, sep, value = str(pair).partition("=")
        key = key.strip()
        if not sep or not key:
            raise ConfigurationError(f"renderer option must look like KEY=VALUE, got {pair!r}")
        out[key] = value
    return out


def _env_or(name: str, default):
    v = os.getenv(name)
    return v if v is not None else default


def _as_int(what: str, value) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{what} must be an integer, got {value!r}") from None


def _as_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}
