# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for PipelineTimer."""

from __future__ import annotations

from pagecapture.pipeline_timer import PipelineTimer


class TestPipelineTimer:
    def test_stage_tracking(self):
        timer = PipelineTimer()
        timer.stage("navigation")
        timer.stage("probe")
        timer.stage("scroll")
        timer.finalize()

        stages = timer.elapsed_per_stage()
        assert list(stages.keys()) == ["navigation", "probe", "scroll"]
        assert all(isinstance(v, float) for v in stages.values())

    def test_current_stage(self):
        timer = PipelineTimer()
        assert timer.current_stage is None
        timer.stage("fetch")
        assert timer.current_stage == "fetch"
        timer.finalize()
        assert timer.current_stage is None

    def test_elapsed_includes_running_stage(self):
        timer = PipelineTimer()
        timer.stage("assemble")
        assert "assemble" in timer.elapsed_per_stage()

    def test_failure_report_structure(self):
        timer = PipelineTimer()
        timer.stage("navigation")
        timer.stage("probe")
        timer.stage("fetch")

        report = timer.failure_report()
        assert report["failed_at"] == "fetch"
        assert [s["stage"] for s in report["completed_stages"]] == ["navigation", "probe"]
        assert isinstance(report["total_ms"], float)
        assert "expired" in report["hint"]

    def test_failure_report_after_finalize(self):
        timer = PipelineTimer()
        timer.stage("navigation")
        timer.finalize()
        report = timer.failure_report("navigation")
        assert report["failed_at"] == "navigation"
        assert report["completed_stages"] == []

    def test_failure_report_no_stages(self):
        report = PipelineTimer().failure_report()
        assert report["failed_at"] == "unknown"
        assert report["completed_stages"] == []

    def test_hints(self):
        assert "playwright install chromium" in PipelineTimer.hint_for_stage("launch")
        assert "waiting" in PipelineTimer.hint_for_stage("queued")
        assert PipelineTimer.hint_for_stage("custom") == "Failed during 'custom' stage."
