import os

import pytest

from BSTS_simstudy.sim_impact.causal_impact_base import EffectEstimate, TrialFailure
from BSTS_simstudy.sim_impact.sim_cache import MemoryCache, PickleCache
from BSTS_simstudy.sim_impact.sim_grid import GridError, SimGrid
from BSTS_simstudy.sim_impact.sim_runner import SimRunner, run_sweep, run_trial
from BSTS_simstudy.synthetic_ts import SimulationParameters

from conftest import FakeEstimator



class CrashingEstimator(FakeEstimator):
    """Kills the worker process on the listed simulation ids."""

    def __init__(self, crash_ids=()):
        super().__init__()
        self.crash_ids = set(crash_ids)

    def __call__(self, series, keep_series=False):
        if series.params.simulation_id in self.crash_ids:
            os._exit(1)
        return super().__call__(series, keep_series=keep_series)


@pytest.fixture
def grid():
    return SimGrid([0., 0.1], [30, 60], n_simulations=2)


def test_sweep_computes_every_trial(grid, fake_estimator):
    res = SimRunner(fake_estimator, progress=False).run_sweep(grid)

    assert len(res) == 8
    assert res.n_requested == 8
    assert res.n_computed == 8
    assert res.n_failed == 0
    assert set(res) == set(grid.params())
    assert all(isinstance(v, EffectEstimate) for v in res.values())


def test_cache_idempotence(grid, fake_estimator):
    cache = MemoryCache()
    first = SimRunner(fake_estimator, cache=cache, progress=False).run_sweep(grid)
    n_calls = len(fake_estimator.calls)

    second = SimRunner(fake_estimator, cache=cache, progress=False).run_sweep(grid)

    assert len(fake_estimator.calls) == n_calls
    assert second.n_computed == 0
    assert second.n_cached == 8
    assert dict(first) == dict(second)


def test_resume_from_disk(tmp_path, grid):
    partial = SimGrid([0.], [30, 60], n_simulations=2)
    SimRunner(FakeEstimator(), cache=PickleCache(str(tmp_path)), progress=False).run_sweep(partial)

    estimator = FakeEstimator()
    res = SimRunner(estimator, cache=PickleCache(str(tmp_path)), progress=False).run_sweep(grid)

    assert res.n_cached == 4
    assert {p.effect_size for p in estimator.calls} == {0.1}
    assert len(res) == 8


def test_same_results_with_fresh_cache(grid):
    first = SimRunner(FakeEstimator(), progress=False).run_sweep(grid)
    second = SimRunner(FakeEstimator(), progress=False).run_sweep(grid)
    assert dict(first) == dict(second)


def test_failures_are_isolated(grid):
    estimator = FakeEstimator(fail_ids=[2])
    cache = MemoryCache()
    res = SimRunner(estimator, cache=cache, progress=False).run_sweep(grid)

    assert res.n_succeeded == 4
    assert res.n_failed == 4
    assert all(p.simulation_id == 2 for p in res.failures)
    assert all(isinstance(f, TrialFailure) for f in res.failures.values())
    assert res.failures_by("effect_size") == {0.: 2, 0.1: 2}
    assert isinstance(cache.get(SimulationParameters(0., 30, simulation_id=2)), TrialFailure)

    report = res.report()
    assert "Trials failed: 4" in report
    assert "no convergence" in report
    assert "Failed trials per group:" in report
    assert "  effect_size=0.0, campaign_duration=30: 1" in report
    assert "  effect_size=0.1, campaign_duration=60: 1" in report
    assert "  effect_size=0.1: 2" in res.report("effect_size")


def test_report_without_failures(grid, fake_estimator):
    report = SimRunner(fake_estimator, progress=False).run_sweep(grid).report()
    assert "Trials failed: 0" in report
    assert "per group" not in report


def test_unexpected_errors_do_not_abort(grid):
    res = SimRunner(FakeEstimator(fail_ids=[1], error=KeyError), progress=False).run_sweep(grid)
    assert res.n_failed == 4
    assert {f.error_type for f in res.failures.values()} == {"KeyError"}


def test_failures_not_retried_by_default(grid):
    cache = MemoryCache()
    SimRunner(FakeEstimator(fail_ids=[2]), cache=cache, progress=False).run_sweep(grid)

    estimator = FakeEstimator()
    res = SimRunner(estimator, cache=cache, progress=False).run_sweep(grid)
    assert estimator.calls == []
    assert res.n_failed == 4

    res = SimRunner(estimator, cache=cache, retry_failed=True, progress=False).run_sweep(grid)
    assert len(estimator.calls) == 4
    assert res.n_failed == 0


def test_keep_series_recomputes_summaries(grid):
    cache = MemoryCache()
    SimRunner(FakeEstimator(), cache=cache, progress=False).run_sweep(grid)

    estimator = FakeEstimator()
    res = SimRunner(estimator, cache=cache, keep_series=True, progress=False).run_sweep(grid)
    assert all(v.has_series for v in res.values())
    assert len(estimator.calls) == 8

    res = SimRunner(estimator, cache=cache, keep_series=True, progress=False).run_sweep(grid)
    assert len(estimator.calls) == 8
    assert res.n_cached == 8


def test_keep_series_needs_series_cache(tmp_path, fake_estimator):
    with pytest.raises(ValueError):
        SimRunner(fake_estimator, cache=PickleCache(str(tmp_path)), keep_series=True)
    with pytest.raises(ValueError):
        SimRunner(fake_estimator, cache=MemoryCache(keep_series=False), keep_series=True)


def test_series_sweep_resumes_from_disk(tmp_path, grid):
    first = SimRunner(FakeEstimator(), cache=PickleCache(str(tmp_path), keep_series=True),
                      keep_series=True, progress=False).run_sweep(grid)

    estimator = FakeEstimator()
    second = SimRunner(estimator, cache=PickleCache(str(tmp_path), keep_series=True),
                       keep_series=True, progress=False).run_sweep(grid)

    assert estimator.calls == []
    assert second.n_computed == 0
    assert second.n_cached == 8
    assert all(v.has_series for v in second.values())
    assert dict(first) == dict(second)


def test_parallel_sweep_matches_serial(grid):
    serial = SimRunner(FakeEstimator(), progress=False).run_sweep(grid)
    parallel = SimRunner(FakeEstimator(fail_ids=[2]), n_jobs=2, progress=False).run_sweep(grid)

    assert parallel.n_requested == 8
    assert parallel.n_failed == 4
    assert all(parallel[p] == serial[p] for p in parallel)
    assert {p.simulation_id for p in parallel} == {1}


def test_lost_worker_does_not_abort_the_sweep(grid):
    cache = MemoryCache()
    first = SimRunner(CrashingEstimator(crash_ids=[2]), cache=cache, n_jobs=2, progress=False).run_sweep(grid)

    assert first.n_succeeded + first.n_failed == 8
    lost = SimulationParameters(0.1, 60, simulation_id=2)
    assert first.failures[lost].error_type == "BrokenProcessPool"

    # trials lost with the worker are not cached and are computed again
    estimator = FakeEstimator()
    second = SimRunner(estimator, cache=cache, progress=False).run_sweep(grid)
    assert len(estimator.calls) == first.n_failed
    assert lost in estimator.calls
    assert second.n_failed == 0
    assert len(second) == 8


def test_list_of_params_is_deduplicated(fake_estimator):
    params = [SimulationParameters(0.1, 30), SimulationParameters(0.1, 30.0)]
    res = run_sweep(params, estimator=fake_estimator, progress=False)
    assert len(res) == 1
    assert len(fake_estimator.calls) == 1


def test_malformed_grid_is_fatal(fake_estimator):
    with pytest.raises(GridError):
        run_sweep([(0.1, 30)], estimator=fake_estimator, progress=False)
    assert fake_estimator.calls == []


def test_run_trial_returns_failure():
    res = run_trial(SimulationParameters(0.1, 30, simulation_id=3), FakeEstimator(fail_ids=[3]))
    assert isinstance(res, TrialFailure)
    assert "no convergence" in res.reason
