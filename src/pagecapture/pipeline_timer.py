# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Pipeline stage timer for latency tracking and failure diagnostics.

Created before the pipeline starts so it survives failures and can report
which stage a job died in.
"""

from __future__ import annotations

import time
from dataclasses import dataclass


@dataclass(slots=True)
class StageRecord:
    name: str
    start_ns: int
    end_ns: int = 0


class PipelineTimer:
    """Track pipeline stage transitions for latency reporting."""

    __slots__ = ("_stages", "_current", "_start_ns")

    def __init__(self) -> None:
        self._stages: list[StageRecord] = []
        self._current: StageRecord | None = None
        self._start_ns: int = time.monotonic_ns()

    def stage(self, name: str) -> None:
        """End previous stage + start new stage."""
        now = time.monotonic_ns()
        if self._current is not None:
            self._current.end_ns = now
            self._stages.append(self._current)
        self._current = StageRecord(name=name, start_ns=now)

    def finalize(self) -> None:
        """End current stage. Call on success or error."""
        if self._current is not None:
            self._current.end_ns = time.monotonic_ns()
            self._stages.append(self._current)
            self._current = None

    @property
    def current_stage(self) -> str | None:
        return self._current.name if self._current else None

    def elapsed_per_stage(self) -> dict[str, float]:
        """Return {stage_name: elapsed_ms} for all stages (including current)."""
        now = time.monotonic_ns()
        result: dict[str, float] = {}
        for s in self._stages:
            result[s.name] = round((s.end_ns - s.start_ns) / 1e6, 1)
        if self._current is not None:
            result[self._current.name] = round((now - self._current.start_ns) / 1e6, 1)
        return result

    def total_ms(self) -> float:
        return round((time.monotonic_ns() - self._start_ns) / 1e6, 1)

    def failure_report(self, failed_stage: str | None = None) -> dict:
        """Structured diagnostic for a failed job."""
        stage = failed_stage or self.current_stage or "unknown"
        completed = [
            {"stage": s.name, "ms": round((s.end_ns - s.start_ns) / 1e6, 1)} for s in self._stages if s.name != stage
        ]
        return {
            "completed_stages": completed,
            "failed_at": stage,
            "total_ms": self.total_ms(),
            "hint": self.hint_for_stage(stage),
        }

    @staticmethod
    def hint_for_stage(stage: str) -> str:
        hints = {
            "queued": "The job was still waiting for a free browser session.",
            "launch": "Chromium could not start. Run: playwright install chromium",
            "navigation": "The document URL may be unreachable, private, or slow to load.",
            "probe": "The page indicator did not appear; the fallback scroll budget was used.",
            "scroll": "The viewer stopped responding while pages were loading.",
            "fetch": "Page images could not be downloaded. Links may have expired.",
            "assemble": "The PDF could not be written.",
        }
        return hints.get(stage, f"Failed during '{stage}' stage.")
