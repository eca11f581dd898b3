"""Playground configuration with environment-variable overrides.

Settings resolve from, in increasing precedence: the dataclass defaults,
``QUERYLAB_*`` environment variables (see :meth:`PlaygroundConfig.from_env`),
and keyword overrides passed to :func:`querylab.create_playground`.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, replace
from typing import Any

from querylab.datasources.http import DEFAULT_BASE_URL
from querylab.duration import parse_duration, parse_stale_time
from querylab.types import DataSourceMode, Duration, StaleTime

_ENV_PREFIX = "QUERYLAB_"


@dataclass(frozen=True, slots=True)
class PlaygroundConfig:
    """Settings for a playground instance.

    Attributes:
        latency: Simulated delay, fixed or a ``(low, high)`` range.
        failure_rate: Probability in ``[0, 1]`` that a call fails.
        mode: ``"mock"`` for the in-memory store, ``"external"`` for HTTP.
        base_url: Endpoint used in external mode.
        default_stale_time: Stale time for queries that do not set one.
        seed: Seed for the simulator's random draws, for reproducible runs.
    """

    latency: Duration | tuple[Duration, Duration] = "500ms"
    failure_rate: float = 0.0
    mode: DataSourceMode = "mock"
    base_url: str = DEFAULT_BASE_URL
    default_stale_time: Duration | StaleTime = 0
    seed: int | None = None

    def __post_init__(self) -> None:
        if isinstance(self.latency, tuple):
            for bound in self.latency:
                parse_duration(bound)
        else:
            parse_duration(self.latency)
        if not 0 <= self.failure_rate <= 1:
            raise ValueError("failure_rate must be between 0 and 1")
        if self.mode not in ("mock", "external"):
            raise ValueError(f"mode must be 'mock' or 'external', got {self.mode!r}")
        parse_stale_time(self.default_stale_time)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> PlaygroundConfig:
        """Build a config from ``QUERYLAB_*`` variables.

        Recognised: ``LATENCY`` (duration, or ``low..high``), ``FAILURE_RATE``,
        ``MODE``, ``BASE_URL``, ``STALE_TIME`` (duration or ``never``),
        ``SEED``. Unset variables keep their defaults.
        """
        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}

        latency = env.get(f"{_ENV_PREFIX}LATENCY")
        if latency:
            values["latency"] = _parse_latency_env(latency)
        failure_rate = env.get(f"{_ENV_PREFIX}FAILURE_RATE")
        if failure_rate:
            try:
                values["failure_rate"] = float(failure_rate)
            except ValueError:
                raise ValueError(
                    f"Invalid {_ENV_PREFIX}FAILURE_RATE: {failure_rate!r}"
                ) from None
        mode = env.get(f"{_ENV_PREFIX}MODE")
        if mode:
            values["mode"] = mode
        base_url = env.get(f"{_ENV_PREFIX}BASE_URL")
        if base_url:
            values["base_url"] = base_url
        stale_time = env.get(f"{_ENV_PREFIX}STALE_TIME")
        if stale_time:
            values["default_stale_time"] = _parse_duration_env(stale_time)
        seed = env.get(f"{_ENV_PREFIX}SEED")
        if seed:
            values["seed"] = int(seed)

        return cls(**values)

    def with_overrides(self, **overrides: Any) -> PlaygroundConfig:
        """Return a copy with the given non-None fields replaced."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})


def _parse_duration_env(value: str) -> Duration:
    # Bare digits are milliseconds
    return int(value) if value.isdigit() else value


def _parse_latency_env(value: str) -> Duration | tuple[Duration, Duration]:
    if ".." in value:
        low, high = value.split("..", 1)
        return _parse_duration_env(low.strip()), _parse_duration_env(high.strip())
    return _parse_duration_env(value.strip())


__all__ = ["PlaygroundConfig"]
