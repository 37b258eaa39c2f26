import threading

import numpy as np
import pytest

from spectrohelio.core.concurrency import Accumulator, CountDownLatch, IncrementalAverage, pool_size

pytestmark = pytest.mark.unit


class TestCountDownLatch:

    def test_releases_after_count(self):
        latch = CountDownLatch(3)
        workers = [threading.Thread(target=latch.count_down) for _ in range(3)]
        for w in workers:
            w.start()

        assert latch.wait(timeout=5)
        assert latch.count == 0

    def test_times_out(self):
        latch = CountDownLatch(1)

        assert latch.wait(timeout=0.05) is False

    def test_zero_count_is_open(self):
        assert CountDownLatch(0).wait(timeout=0)

    def test_never_goes_negative(self):
        latch = CountDownLatch(1)
        latch.count_down()
        latch.count_down()

        assert latch.count == 0

    def test_negative_count_rejected(self):
        with pytest.raises(ValueError):
            CountDownLatch(-1)


class TestAccumulator:

    def test_applies_updates_in_order(self):
        seen = []
        with Accumulator(name="TestAccumulator") as acc:
            for i in range(50):
                acc.submit(lambda i=i: seen.append(i))
            acc.drain()

        assert seen == list(range(50))
        assert not acc.is_alive()

    def test_failing_update_is_recorded(self):
        seen = []
        with Accumulator() as acc:
            acc.submit(lambda: 1 / 0)
            acc.submit(lambda: seen.append("after"))
            acc.drain()

        assert len(acc.errors) == 1
        assert isinstance(acc.errors[0], ZeroDivisionError)
        assert seen == ["after"]

    def test_submit_after_stop_rejected(self):
        acc = Accumulator()
        acc.stop()

        with pytest.raises(RuntimeError):
            acc.submit(lambda: None)


def test_incremental_average_matches_mean():
    rng = np.random.default_rng(0)
    buffers = [rng.random((4, 5)) for _ in range(7)]
    average = IncrementalAverage((4, 5))

    for b in buffers:
        average.add(b)

    assert average.count == 7
    np.testing.assert_allclose(average.average, np.mean(buffers, axis=0))


def test_pool_size_bounds():
    assert pool_size(8, 1) == 1
    assert 1 <= pool_size(1, 1000) <= 1000
