"""Progress cadence and ETA formatting shared by acquisition and encoding."""

from __future__ import annotations

from datetime import datetime, timedelta

REPORT_STEPS = 20


def should_report(completed: int, total: int) -> bool:
    """True roughly every 5% of ``total`` and on the final item."""
    return completed == total or completed % max(1, total // REPORT_STEPS) == 0


def eta_string(elapsed: float, completed: int, total: int) -> str:
    if completed <= 0 or total <= 0 or completed > total or elapsed <= 0.0:
        return "ETA estimating"

    remaining = timedelta(seconds=round(elapsed * (total - completed) / completed))
    finish_time = datetime.now() + remaining
    return f"ETA {remaining} (finish {finish_time:%H:%M:%S})"


__all__ = ["eta_string", "should_report"]
