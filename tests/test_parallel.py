"""Tests for the per-sample fork-join helpers."""
import threading

import pytest

from mini_nn import parallel


class TestMapSamples:
    """Tests for map_samples."""

    def test_keeps_order(self):
        assert parallel.map_samples(lambda a, b: a * b, [1, 2, 3, 4], [5, 6, 7, 8]) == [5, 12, 21, 32]

    def test_inline_with_one_worker(self):
        parallel.set_workers(1)
        threads = parallel.map_samples(lambda _: threading.current_thread(), range(4))
        assert all(t is threading.main_thread() for t in threads)

    def test_empty_batch(self):
        assert parallel.map_samples(lambda x: x, []) == []

    def test_propagates_errors(self):
        parallel.set_workers(2)

        def fail(x):
            if x == 2:
                raise ValueError("boom")
            return x

        with pytest.raises(ValueError):
            parallel.map_samples(fail, [1, 2, 3])

    def test_rejects_invalid_worker_count(self):
        with pytest.raises(ValueError):
            parallel.set_workers(0)


class TestAccumulator:
    """Tests for the locked accumulator."""

    def test_mean_across_threads(self):
        parallel.set_workers(4)
        acc = parallel.Accumulator()
        parallel.map_samples(acc.add, [float(i) for i in range(100)])
        assert acc.count == 100
        assert acc.mean() == pytest.approx(49.5)

    def test_empty_mean(self):
        assert parallel.Accumulator().mean() == 0.0
