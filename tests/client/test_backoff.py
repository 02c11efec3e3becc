"""Backoff 测试"""

import pytest
from atelier.client import Backoff


def _no_jitter(**kwargs) -> Backoff:
    return Backoff(rng=lambda: 0.5, **kwargs)


def test_doubles_until_cap():
    backoff = _no_jitter()
    delays = [backoff.next_delay() for _ in range(7)]
    assert delays == [1.0, 2.0, 4.0, 8.0, 16.0, 30.0, 30.0]
    assert backoff.attempt == 7


def test_reset_starts_over():
    backoff = _no_jitter()
    backoff.next_delay()
    backoff.next_delay()
    backoff.reset()
    assert backoff.attempt == 0
    assert backoff.next_delay() == 1.0


def test_jitter_bounds():
    low = Backoff(base=10, cap=100, jitter=0.1, rng=lambda: 0.0)
    high = Backoff(base=10, cap=100, jitter=0.1, rng=lambda: 0.999999)
    assert low.next_delay() == pytest.approx(9.0)
    assert high.next_delay() == pytest.approx(11.0, rel=1e-4)


def test_jitter_never_exceeds_cap():
    backoff = Backoff(base=1, cap=4, jitter=0.5, rng=lambda: 0.999999)
    delays = [backoff.next_delay() for _ in range(5)]
    assert max(delays) == 4


@pytest.mark.parametrize(
    "kwargs",
    [{"base": 0}, {"cap": -1}, {"factor": 0.5}, {"jitter": 1.0}],
)
def test_invalid_arguments(kwargs):
    with pytest.raises(ValueError):
        Backoff(**kwargs)
