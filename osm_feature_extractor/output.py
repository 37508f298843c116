"""Gzip JSON-lines output and progress logging."""

import gzip
import json
import logging
import os
import time
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class FeatureWriter:
    """Appends one compact JSON document per line to a gzip file."""

    def __init__(self, path):
        self.path = Path(path)
        self.count = 0
        self._file = None

    def __enter__(self) -> 'FeatureWriter':
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def open(self):
        os.makedirs(self.path.parent, exist_ok=True)
        logger.info(f"Writing {self.path}")
        self._file = gzip.open(self.path, 'wt', encoding='utf-8')

    def add(self, feature: Dict[str, Any]):
        self.write_line(json.dumps(feature, separators=(',', ':'), ensure_ascii=False))

    def write_line(self, line: str):
        if self._file is None:
            raise ValueError(f"{self.path} is not open")
        self._file.write(line)
        self._file.write('\n')
        self.count += 1

    def close(self):
        if self._file is not None:
            self._file.close()
            self._file = None
            logger.info(f"Wrote {self.count:,} lines to {self.path} ({os.path.getsize(self.path):,} bytes)")


class ProgressCounter:
    """Counts items and logs progress every ``log_interval`` items."""

    def __init__(self, task: str, unit: str, log_interval: int = 100000,
                 log: Optional[logging.Logger] = None):
        self.task = task
        self.unit = unit
        self.log_interval = log_interval
        self.count = 0
        self._log = log or logger
        self._start_time = time.time()

    def __enter__(self) -> 'ProgressCounter':
        self._start_time = time.time()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        elapsed = time.time() - self._start_time
        status = "finished" if exc_type is None else "aborted"
        self._log.info(f"{self.task}: {status} after {self.count:,} {self.unit} in {elapsed:.2f}s "
                       f"({self._rate(elapsed):.1f} {self.unit}/s)")
        return False

    def _rate(self, elapsed: float) -> float:
        return self.count / elapsed if elapsed > 0 else 0.0

    def inc(self, amount: int = 1):
        before = self.count // self.log_interval
        self.count += amount
        if self.count // self.log_interval > before:
            elapsed = time.time() - self._start_time
            self._log.info(f"{self.task}: {self.count:,} {self.unit} ({self._rate(elapsed):.1f} {self.unit}/s)")
