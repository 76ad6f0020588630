# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Capture pipeline configuration.

Immutable, validated on construction. ``CaptureConfig.from_env()`` applies
``PAGECAPTURE_*`` environment overrides on top of the defaults.

Leaf module — no pagecapture imports.
"""

from __future__ import annotations

import dataclasses
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass

logger = logging.getLogger(__name__)

# Google Drive viewer defaults
DEFAULT_IMAGE_PATH_MARKER = "viewerng/img"
DEFAULT_PAGE_INDICATOR_SELECTOR = ".ndfHFb-c4YZDc-DARUcf-NnAfwf-j4LONd"

_TRUE_VALUES = ("1", "true", "yes")


@dataclass(frozen=True, slots=True)
class CaptureConfig:
    """Tunables for one capture run (shared by all jobs of a process)."""

    # Request interception
    image_path_marker: str = DEFAULT_IMAGE_PATH_MARKER
    page_param: str = "page"
    format_param: str = "webp"
    lossless_format_value: str = "false"
    width_param: str = "w"
    canonical_width: int = 2400
    order_by_page_number: bool = False

    # Page count probe
    page_indicator_selector: str = DEFAULT_PAGE_INDICATOR_SELECTOR
    probe_timeout_ms: int = 10_000

    # Scrolling
    scroll_key: str = "PageDown"
    scroll_delay_ms: int = 500
    scroll_multiplier: int = 2
    fallback_scroll_iterations: int = 100
    idle_ticks_threshold: int = 10
    settle_ms: int = 2000

    # Fetching
    fetch_concurrency: int = 4
    fetch_timeout_s: float = 30.0
    fetch_retry_delays: tuple[float, ...] = (0.3, 1.0)

    # Outcome policy
    fail_on_empty: bool = False

    def __post_init__(self) -> None:
        if self.canonical_width <= 0:
            raise ValueError(f"canonical_width must be > 0, got {self.canonical_width}")
        if self.probe_timeout_ms < 0:
            raise ValueError(f"probe_timeout_ms must be >= 0, got {self.probe_timeout_ms}")
        if self.scroll_delay_ms < 0:
            raise ValueError(f"scroll_delay_ms must be >= 0, got {self.scroll_delay_ms}")
        if self.scroll_multiplier <= 0:
            raise ValueError(f"scroll_multiplier must be > 0, got {self.scroll_multiplier}")
        if self.fallback_scroll_iterations < 0:
            raise ValueError(f"fallback_scroll_iterations must be >= 0, got {self.fallback_scroll_iterations}")
        if self.idle_ticks_threshold <= 0:
            raise ValueError(f"idle_ticks_threshold must be > 0, got {self.idle_ticks_threshold}")
        if self.settle_ms < 0:
            raise ValueError(f"settle_ms must be >= 0, got {self.settle_ms}")
        if self.fetch_concurrency <= 0:
            raise ValueError(f"fetch_concurrency must be > 0, got {self.fetch_concurrency}")
        if self.fetch_timeout_s <= 0:
            raise ValueError(f"fetch_timeout_s must be > 0, got {self.fetch_timeout_s}")
        if any(d < 0 for d in self.fetch_retry_delays):
            raise ValueError("fetch_retry_delays must not contain negative delays")
        for name in ("image_path_marker", "page_param", "format_param", "width_param"):
            if not getattr(self, name):
                raise ValueError(f"{name} must not be empty")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, **overrides) -> CaptureConfig:
        """Build a config from ``PAGECAPTURE_*`` variables.

        Unparseable values are ignored (logged) and the default is kept.
        Explicit keyword *overrides* win over the environment.
        """
        env = os.environ if environ is None else environ
        values: dict = {}
        for f in dataclasses.fields(cls):
            raw = env.get(f"PAGECAPTURE_{f.name.upper()}", "").strip()
            if not raw:
                continue
            default = f.default
            try:
                if isinstance(default, bool):
                    values[f.name] = raw.lower() in _TRUE_VALUES
                elif isinstance(default, int):
                    values[f.name] = int(raw)
                elif isinstance(default, float):
                    values[f.name] = float(raw)
                elif isinstance(default, tuple):
                    values[f.name] = tuple(float(p) for p in raw.split(",") if p.strip())
                else:
                    values[f.name] = raw
            except ValueError:
                logger.warning("Ignoring invalid PAGECAPTURE_%s=%r", f.name.upper(), raw)
        values.update(overrides)
        return cls(**values)
