"""
Monitoring utilities for ingestion stage tracking.
"""

import time
import logging
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

class StageMonitor:
    """Records how long each ingestion stage takes for one run."""

    def __init__(self, run_name: str):
        self.run_name = run_name
        self.start_times: Dict[str, float] = {}
        self.durations: Dict[str, float] = {}
        self.order: List[str] = []
        self._current: Optional[str] = None

    def enter(self, stage: str) -> None:
        """Close the current stage (if any) and start timing ``stage``."""
        now = time.monotonic()
        if self._current is not None:
            self._close(self._current, now)
        self.start_times[stage] = now
        self.order.append(stage)
        self._current = stage
        logger.info(f"[{self.run_name}] entering stage '{stage}'")

    def finish(self) -> None:
        """Close the current stage."""
        if self._current is not None:
            self._close(self._current, time.monotonic())
            self._current = None

    def _close(self, stage: str, now: float) -> None:
        duration = now - self.start_times[stage]
        self.durations[stage] = duration
        logger.info(f"[{self.run_name}] stage '{stage}' finished in {duration:.2f}s")

    def get_statistics(self) -> Dict:
        """Get stage timing statistics."""
        if not self.durations:
            return {"stages": 0, "total_duration": 0.0, "slowest_stage": None}

        slowest = max(self.durations, key=self.durations.get)
        return {
            "stages": len(self.durations),
            "total_duration": sum(self.durations.values()),
            "slowest_stage": slowest,
            "durations": dict(self.durations),
        }
