"""Latency statistics per (path, method), kept as running totals."""

import math
import threading

from pydantic import BaseModel


class Stats(BaseModel):
    """Finalized timing summary in microseconds."""

    count: int
    mean: float
    std_dev: float
    min: int
    max: int


class StatsRecord:
    """Running totals for one operation. Memory stays constant per trial."""

    def __init__(self):
        self.count = 0
        self.total = 0
        self.total_sq = 0
        self.min: int | None = None
        self.max: int | None = None

    def add(self, elapsed_us: int) -> None:
        self.count += 1
        self.total += elapsed_us
        self.total_sq += elapsed_us * elapsed_us
        self.min = elapsed_us if self.min is None else min(self.min, elapsed_us)
        self.max = elapsed_us if self.max is None else max(self.max, elapsed_us)

    def finalize(self) -> Stats | None:
        if self.count == 0:
            return None
        mean = self.total / self.count
        # population variance; integer totals keep it exact until the division
        variance = max(self.total_sq * self.count - self.total * self.total, 0) / (self.count * self.count)
        return Stats(count=self.count, mean=mean, std_dev=math.sqrt(variance), min=self.min, max=self.max)


class StatsAggregator:
    """Thread-safe collection of StatsRecords.

    Workers fuzzing different operations share one aggregator; readers such
    as a progress display get independent snapshots.
    """

    def __init__(self):
        self._records: dict[tuple[str, str], StatsRecord] = {}
        self._lock = threading.Lock()

    def record(self, path: str, method: str, elapsed_us: int) -> None:
        with self._lock:
            self._records.setdefault((path, method), StatsRecord()).add(elapsed_us)

    def get(self, path: str, method: str) -> Stats | None:
        with self._lock:
            record = self._records.get((path, method))
            return record.finalize() if record is not None else None

    def snapshot(self) -> dict[tuple[str, str], Stats]:
        result = {}
        with self._lock:
            for key, record in self._records.items():
                stats = record.finalize()
                if stats is not None:
                    result[key] = stats
        return result
