"""
Per-sample fork-join helpers.
Layers and losses fan out one unit of work per sample of a batch and wait for
all of them before returning.
"""
import os
import threading
from concurrent.futures import ThreadPoolExecutor

_lock = threading.Lock()
_executor = None
_workers = min(8, os.cpu_count() or 1)


def set_workers(workers):
    """
    Set the number of worker threads used for per-sample work.

    Args:
        workers: Positive thread count; None restores the default; 1 runs inline
    """
    global _executor, _workers
    if workers is None:
        workers = min(8, os.cpu_count() or 1)
    if workers < 1:
        raise ValueError(f"workers must be positive, got {workers}")
    with _lock:
        if _executor is not None:
            _executor.shutdown(wait=True)
            _executor = None
        _workers = workers


def get_workers():
    return _workers


def _get_executor():
    global _executor
    with _lock:
        if _executor is None:
            _executor = ThreadPoolExecutor(max_workers=_workers, thread_name_prefix='mini_nn')
        return _executor


def map_samples(fn, *batches):
    """
    Apply fn to every sample (zipped across batches) and join.
    Results keep the order of the inputs; an exception raised by any sample
    propagates to the caller.
    """
    if _workers == 1 or len(batches[0]) <= 1:
        return [fn(*args) for args in zip(*batches)]
    return list(_get_executor().map(fn, *batches))


class Accumulator:
    """Lock-protected running sum for reductions across samples"""

    def __init__(self):
        self._lock = threading.Lock()
        self.total = 0.0
        self.count = 0

    def add(self, value):
        with self._lock:
            self.total += value
            self.count += 1

    def mean(self):
        with self._lock:
            return self.total / self.count if self.count else 0.0
