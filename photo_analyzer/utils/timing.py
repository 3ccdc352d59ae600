"""
Timing helpers for stage duration reporting.
"""
import time
from contextlib import contextmanager
from typing import Dict, Any
from photo_analyzer.core.logging import get_logger

logger = get_logger("timing")


@contextmanager
def timer(operation_name: str):
    """Log how long the wrapped block took."""
    start = time.perf_counter()
    try:
        yield
    finally:
        logger.info(f"Execution time [{operation_name}]: {time.perf_counter() - start:.3f}s")


class StageClock:
    """Accumulates wall time per stage label across a run."""
    
    def __init__(self):
        self.durations: Dict[str, float] = {}
        self._open: Dict[str, float] = {}
    
    def start(self, label: str) -> None:
        self._open[label] = time.perf_counter()
    
    def stop(self, label: str) -> float:
        started = self._open.pop(label, None)
        if started is None:
            return 0.0
        elapsed = time.perf_counter() - started
        self.durations[label] = self.durations.get(label, 0.0) + elapsed
        return elapsed
    
    def summary(self) -> Dict[str, Any]:
        return {
            "total_seconds": round(sum(self.durations.values()), 3),
            "stages": {label: round(secs, 3) for label, secs in self.durations.items()},
        }
