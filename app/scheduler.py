"""Background redistribution sweep.

Lifecycle: start()/stop() run a daemon thread that sweeps immediately and
then once per interval. run_sweep() and trigger() can be called directly.
"""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass, field
from typing import List, Optional

from capacity.api import CapacityService
from capacity.redistribution import RedistributionResult

logger = logging.getLogger(__name__)

REDISTRIBUTION_INTERVAL_SECONDS = float(os.environ.get("CAPACITY_SWEEP_INTERVAL_SECONDS", "60"))


@dataclass
class SweepReport:
    processed: int = 0
    failed: int = 0
    failed_ids: List[int] = field(default_factory=list)

    def to_dict(self):
        return {"processed": self.processed, "failed": self.failed, "failedIds": list(self.failed_ids)}


class RedistributionScheduler:
    """Runs redistribution for every pharmacy on a fixed interval."""

    def __init__(
        self,
        service: CapacityService,
        *,
        interval_seconds: float = REDISTRIBUTION_INTERVAL_SECONDS,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._service = service
        self._interval_s = interval_seconds
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_sweep(self) -> SweepReport:
        report = SweepReport()
        for pharmacy_id in self._service.list_pharmacy_ids():
            try:
                self._service.redistribute(pharmacy_id)
            except Exception:
                logger.exception("Redistribution failed for pharmacy %s", pharmacy_id)
                report.failed += 1
                report.failed_ids.append(pharmacy_id)
            else:
                report.processed += 1
        if report.failed:
            logger.warning("Sweep finished: %d processed, %d failed", report.processed, report.failed)
        else:
            logger.debug("Sweep finished: %d processed", report.processed)
        return report

    def trigger(self, pharmacy_id: Optional[int] = None) -> SweepReport | RedistributionResult:
        """Run one pharmacy synchronously, or a full sweep when no id is given."""
        if pharmacy_id is None:
            return self.run_sweep()
        return self._service.redistribute(pharmacy_id)

    def start(self) -> None:
        with self._lock:
            if self._thread is not None:
                return
            self._stop_event.clear()
            self._thread = threading.Thread(target=self._run_loop, name="RedistributionScheduler", daemon=True)
            self._thread.start()
        logger.info("Redistribution scheduler started (interval=%ss)", self._interval_s)

    def stop(self) -> None:
        with self._lock:
            thread = self._thread
            if thread is None:
                return
            self._stop_event.set()
            thread.join(timeout=self._interval_s + 5)
            self._thread = None
        logger.info("Redistribution scheduler stopped")

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.run_sweep()
            except Exception:
                logger.exception("Redistribution sweep failed")
            self._stop_event.wait(timeout=self._interval_s)
