from datetime import date

import pytest

from skills.job_sync.quota import QuotaManager


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def _manager(keys, clock=None, **kwargs):
    clock = clock or FakeClock()
    return QuotaManager(keys, clock=clock, sleep=clock.sleep, **kwargs), clock


def test_never_used_credentials_are_picked_first_in_index_order():
    qm, clock = _manager(["k1", "k2", "k3"])

    picked = []
    for _ in range(3):
        idx = qm.acquire()
        picked.append(idx)
        clock.now += 10

    assert picked == [0, 1, 2]


def test_selection_prefers_longest_idle_credential():
    qm, clock = _manager(["k1", "k2"])
    qm.record_call(0)
    clock.now += 5
    qm.record_call(1)
    clock.now += 5

    assert qm.select_credential() == 0


def test_fairness_spreads_calls_evenly():
    qm, clock = _manager(["a", "b", "c"])
    counts = [0, 0, 0]
    for _ in range(30):
        idx = qm.acquire()
        counts[idx] += 1
        clock.now += 1

    assert counts == [10, 10, 10]


def test_exhausted_credentials_are_never_selected():
    qm, _ = _manager(["k1", "k2"])
    qm.mark_exhausted(0)

    assert qm.select_credential() == 1
    qm.mark_exhausted(1)
    assert qm.select_credential() is None
    assert qm.all_exhausted is True
    assert qm.acquire() is None


def test_exhaustion_clears_when_day_changes():
    current = {"day": date(2026, 3, 1)}
    qm, _ = _manager(["k1"], today=lambda: current["day"])
    qm.mark_exhausted(0)
    assert qm.all_exhausted is True

    current["day"] = date(2026, 3, 2)

    assert qm.all_exhausted is False
    assert qm.select_credential() == 0


def test_wait_enforces_minimum_spacing_per_credential():
    qm, clock = _manager(["k1"], requests_per_minute=30)
    assert qm.acquire() == 0
    assert clock.sleeps == []

    clock.now += 1.0
    qm.acquire()

    assert len(clock.sleeps) == 1
    assert clock.sleeps[0] == pytest.approx(qm.min_delay_sec - 1.0)


def test_min_delay_stays_under_the_rate_ceiling():
    qm, _ = _manager(["k1"], requests_per_minute=30)
    assert qm.min_delay_sec > 2.0


def test_reload_appends_new_credentials_and_is_throttled():
    source = {"keys": ["k1"]}
    qm, clock = _manager(["k1"], loader=lambda: list(source["keys"]), reload_interval_sec=10)

    source["keys"] = ["k1", "k2"]
    assert qm.reload_from_config() == 1
    assert len(qm) == 2
    assert qm.credential(1) == "k2"
    assert qm.select_credential() == 1

    source["keys"] = ["k1", "k2", "k3"]
    clock.now += 3
    assert qm.reload_from_config() == 0
    assert len(qm) == 2

    clock.now += 10
    assert qm.reload_from_config() == 1
    assert len(qm) == 3


def test_forced_reload_ignores_throttle():
    source = {"keys": ["k1"]}
    qm, _ = _manager(["k1"], loader=lambda: list(source["keys"]))
    qm.reload_from_config()

    source["keys"] = ["k1", "k2"]

    assert qm.reload_from_config(force=True) == 1


def test_reloaded_credential_revives_exhausted_pool():
    source = {"keys": ["k1"]}
    qm, _ = _manager(["k1"], loader=lambda: list(source["keys"]))
    qm.mark_exhausted(0)
    assert qm.all_exhausted is True

    source["keys"] = ["k1", "k2"]
    qm.reload_from_config(force=True)

    assert qm.all_exhausted is False
    assert qm.acquire() == 1


def test_rejects_non_positive_rate():
    with pytest.raises(ValueError):
        QuotaManager(["k1"], requests_per_minute=0)
