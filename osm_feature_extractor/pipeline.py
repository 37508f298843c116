"""Order preserving concurrent processing with bounded memory.

A single reader thread cuts the source into batches, a fixed pool of
worker threads transforms the batches, and the consuming thread releases
finished batches strictly in the order they were read. At most
``queue_capacity`` batches are outstanding (dispatched but not yet
released) at any time, so a slow consumer stalls the reader instead of
letting results pile up.
"""

import logging
import queue
import threading
from concurrent.futures import ThreadPoolExecutor
from itertools import islice
from typing import Any, Callable, Iterable, Iterator, List, NamedTuple, Optional

logger = logging.getLogger(__name__)


class _Filtered:
    """Marker type for results that should not reach the consumer."""

    def __repr__(self):
        return 'FILTERED'


FILTERED = _Filtered()


def compose(*stages: Callable) -> Callable:
    """Chain single-argument stages left to right, stopping at FILTERED."""
    if not stages:
        raise ValueError("compose() needs at least one stage")

    def composed(item):
        for stage in stages:
            item = stage(item)
            if item is FILTERED:
                return FILTERED
        return item

    return composed


def consume(iterable: Iterable) -> int:
    """Exhaust an iterable and return how many items it produced."""
    count = 0
    for _ in iterable:
        count += 1
    return count


class _BatchResult(NamedTuple):
    seq: int
    outputs: List[Any]
    error: Optional[BaseException]


class ConcurrentPipeline:
    """Apply ``processor`` to every element of ``source`` using worker threads.

    Iterating the pipeline yields ``processor(x)`` for each input ``x`` in
    input order, skipping results that are FILTERED. An exception raised by
    the processor is re-raised to the consumer at the position of the item
    that caused it, after all earlier results; the pipeline is then shut
    down. An exception raised by the source is re-raised after the last
    batch read before it.

    The pipeline can be iterated once. Use it as a context manager (or
    exhaust it) so that the worker threads are always released.
    """

    def __init__(self, source: Iterable, processor: Callable, worker_count: int = 4,
                 batch_size: int = 10, queue_capacity: int = 100, name: str = "pipeline"):
        if worker_count < 1:
            raise ValueError(f"worker_count must be at least 1, got {worker_count}")
        if batch_size < 1:
            raise ValueError(f"batch_size must be at least 1, got {batch_size}")
        if queue_capacity < 1:
            raise ValueError(f"queue_capacity must be at least 1, got {queue_capacity}")

        self.name = name
        self._source = source
        self._processor = processor
        self._worker_count = worker_count
        self._batch_size = batch_size
        self._queue_capacity = queue_capacity

        # Guards everything below except the work queue
        self._cond = threading.Condition()
        self._slots: List[Optional[_BatchResult]] = [None] * queue_capacity
        self._next_release = 0
        self._dispatched = 0
        self._total: Optional[int] = None
        self._reader_error: Optional[BaseException] = None
        self._started = False
        self._iterated = False
        self._closed = False
        self.peak_outstanding = 0

        self._work = queue.Queue()
        self._executor: Optional[ThreadPoolExecutor] = None
        self._reader: Optional[threading.Thread] = None

    @property
    def batches_dispatched(self) -> int:
        return self._dispatched

    @property
    def batches_released(self) -> int:
        return self._next_release

    @property
    def closed(self) -> bool:
        return self._closed

    def __enter__(self) -> 'ConcurrentPipeline':
        self._start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def __iter__(self) -> Iterator:
        with self._cond:
            if self._iterated:
                raise RuntimeError(f"{self.name} can only be iterated once")
            self._iterated = True
        self._start()
        return self._drain()

    def _start(self):
        with self._cond:
            if self._closed:
                raise RuntimeError(f"{self.name} is closed")
            if self._started:
                return
            self._started = True

        logger.debug(f"Starting {self.name}: {self._worker_count} workers, batch size {self._batch_size}, "
                     f"capacity {self._queue_capacity}")
        self._executor = ThreadPoolExecutor(max_workers=self._worker_count,
                                            thread_name_prefix=f"{self.name}-worker")
        for _ in range(self._worker_count):
            self._executor.submit(self._work_loop)
        self._reader = threading.Thread(target=self._read_loop, name=f"{self.name}-reader", daemon=True)
        self._reader.start()

    def _read_loop(self):
        seq = 0
        try:
            source = iter(self._source)
            while True:
                # Backpressure: wait until the oldest outstanding batch is released
                with self._cond:
                    while not self._closed and seq - self._next_release >= self._queue_capacity:
                        self._cond.wait()
                    if self._closed:
                        break

                batch = list(islice(source, self._batch_size))
                if not batch:
                    break

                with self._cond:
                    self._dispatched = seq + 1
                    self.peak_outstanding = max(self.peak_outstanding, seq + 1 - self._next_release)
                self._work.put((seq, batch))
                seq += 1
        except BaseException as e:
            logger.debug(f"{self.name} source failed after {seq} batches: {e}")
            with self._cond:
                self._reader_error = e
        finally:
            with self._cond:
                self._total = seq
                self._cond.notify_all()
            for _ in range(self._worker_count):
                self._work.put(None)

    def _work_loop(self):
        while True:
            item = self._work.get()
            if item is None:
                return
            seq, batch = item
            if self._closed:
                continue

            outputs = []
            error = None
            for element in batch:
                try:
                    outputs.append(self._processor(element))
                except BaseException as e:
                    error = e
                    break

            with self._cond:
                self._slots[seq % self._queue_capacity] = _BatchResult(seq, outputs, error)
                self._cond.notify_all()

    def _drain(self) -> Iterator:
        capacity = self._queue_capacity
        try:
            while True:
                with self._cond:
                    while True:
                        slot = self._slots[self._next_release % capacity]
                        if slot is not None and slot.seq == self._next_release:
                            break
                        if self._total is not None and self._next_release >= self._total:
                            if self._reader_error is not None:
                                raise self._reader_error
                            return
                        self._cond.wait()
                    self._slots[self._next_release % capacity] = None
                    self._next_release += 1
                    self._cond.notify_all()

                for output in slot.outputs:
                    if output is not FILTERED:
                        yield output
                if slot.error is not None:
                    raise slot.error
        finally:
            self.close()

    def close(self):
        """Stop reading, stop the workers and drop buffered results.

        Safe to call more than once and from an unfinished iteration.
        Batches already being processed run to completion but their
        results are discarded.
        """
        with self._cond:
            if self._closed:
                return
            self._closed = True
            self._cond.notify_all()

        if self._reader is not None:
            self._reader.join()
        if self._executor is not None:
            self._executor.shutdown(wait=True)

        while True:
            try:
                self._work.get_nowait()
            except queue.Empty:
                break
        with self._cond:
            self._slots = [None] * self._queue_capacity

        logger.debug(f"Closed {self.name} after releasing {self._next_release} of "
                     f"{self._dispatched} batches")


def process_concurrently(source: Iterable, processor: Callable, worker_count: int = 4,
                         batch_size: int = 10, queue_capacity: int = 100,
                         name: str = "pipeline") -> ConcurrentPipeline:
    return ConcurrentPipeline(source, processor, worker_count=worker_count, batch_size=batch_size,
                              queue_capacity=queue_capacity, name=name)
