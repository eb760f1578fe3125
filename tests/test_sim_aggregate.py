from dataclasses import replace

import numpy as np
import pandas as pd
import pytest

from BSTS_simstudy.sim_impact.causal_impact_base import TrialFailure
from BSTS_simstudy.sim_impact.sim_aggregate import (aggregate, beta_binomial_interval, coverage, covers_truth,
                                                    pointwise_error, rejection_rates, rejects_null,
                                                    summarize_estimates, to_frame, wald_interval)
from BSTS_simstudy.sim_impact.sim_runner import SimRunner
from BSTS_simstudy.sim_impact.sim_grid import SimGrid
from BSTS_simstudy.synthetic_ts import SimulationParameters

from conftest import FakeEstimator, make_estimate


def _results(n, n_reject, effect_size=0.1, duration=30):
    res = {}
    for i in range(1, n + 1):
        params = SimulationParameters(effect_size, duration, simulation_id=i)
        res[params] = make_estimate(0.01, 0.2) if i <= n_reject else make_estimate(-0.01, 0.2)
    return res


def test_rejection_rate_closed_form():
    stats = rejection_rates(_results(10, 5), group_by="effect_size")
    stat = stats[0.1]

    assert stat.n == 10
    assert stat.successes == 5
    assert stat.freq_mean == pytest.approx(0.5)
    assert stat.freq_lower == pytest.approx(0.5 - 1.96 * np.sqrt(0.025))
    assert stat.freq_lower == pytest.approx(0.1901, abs=1e-4)
    assert stat.freq_upper == pytest.approx(0.8099, abs=1e-4)
    assert stat.bayes_mean == pytest.approx(6 / 12)
    assert stat.bayes_lower < 0.5 < stat.bayes_upper


def test_beta_binomial_interval():
    mean, lower, upper = beta_binomial_interval(5, 10)
    assert mean == pytest.approx(0.5)
    # Beta(6, 6) is symmetric around 0.5
    assert lower == pytest.approx(1 - upper)
    assert 0.2 < lower < 0.3

    mean, lower, upper = beta_binomial_interval(0, 10)
    assert mean == pytest.approx(1 / 12)
    assert lower >= 0
    # Beta(1, 11) quantile has a closed form
    assert upper == pytest.approx(1 - 0.025 ** (1 / 11))


def test_wald_interval_edges():
    assert wald_interval(0, 10) == (0., 0., 0.)
    assert wald_interval(10, 10) == (1., 1., 1.)
    assert all(np.isnan(wald_interval(0, 0)))


def test_coverage_all_inside():
    res = {SimulationParameters(0.1, 30, simulation_id=i): make_estimate(0.05, 0.15) for i in range(1, 6)}
    stat = coverage(res, group_by="effect_size")[0.1]
    assert stat.rate == 1.
    assert stat.successes == 5


def test_decision_rules():
    params = SimulationParameters(0.1, 30)
    assert rejects_null(params, make_estimate(0.01, 0.2))
    assert not rejects_null(params, make_estimate(0., 0.2))
    assert covers_truth(params, make_estimate(0.1, 0.2))
    assert not covers_truth(params, make_estimate(0.11, 0.2))


def test_grouping_and_failures():
    res = _results(4, 4, effect_size=0.1)
    res.update(_results(4, 0, effect_size=0.))
    res[SimulationParameters(0.5, 30)] = TrialFailure("boom")
    res[SimulationParameters(0.5, 30, simulation_id=2)] = None

    stats = aggregate(res, ("effect_size", "campaign_duration"), rejects_null)
    assert list(stats) == [(0., 30), (0.1, 30)]
    assert stats[(0., 30)].rate == 0.
    assert stats[(0.1, 30)].rate == 1.


def test_unknown_group_field():
    with pytest.raises(ValueError):
        rejection_rates(_results(2, 1), group_by="colour")


def test_to_frame():
    stats = rejection_rates(_results(10, 5))
    df = to_frame(stats, ("effect_size", "campaign_duration"))
    assert list(df[["effect_size", "campaign_duration", "n", "successes"]].iloc[0]) == [0.1, 30, 10, 5]
    assert "bayes_upper" in df.columns


def test_aggregation_is_pure():
    res = _results(10, 3)
    assert rejection_rates(res) == rejection_rates(res)


def test_pointwise_error_of_exact_estimator():
    grid = SimGrid([0.1], [20], [0.01, 0.1], n_simulations=3)
    res = SimRunner(FakeEstimator(), keep_series=True, progress=False).run_sweep(grid)

    df = pointwise_error(res, group_by="structural_change_sd")
    assert set(df["structural_change_sd"]) == {0.01, 0.1}
    assert df["day"].max() == 20
    assert (df["n"] == 3).all()
    # the fake estimator recovers the true effect up to rounding
    assert df["mape"].abs().max() < 1e-8


def test_pointwise_error_skips_trials_without_series():
    res = _results(3, 1)
    df = pointwise_error(res)
    assert df.empty
    assert list(df.columns) == ["structural_change_sd", "day", "n", "mape", "lower", "upper"]


def test_pointwise_error_interval():
    params = [SimulationParameters(0.5, 2, simulation_id=i) for i in (1, 2)]
    res = {}
    for p, bias in zip(params, (0.1, 0.3)):
        series = pd.DataFrame({"response": np.full(367, 3.), "point_effect": np.full(367, 1. + bias)})
        res[p] = replace(make_estimate(0.1, 0.2), series=series)

    df = pointwise_error(res, group_by="effect_size")
    # true effect 3/1.5*0.5 = 1, errors 10% and 30%
    assert df["mape"].tolist() == pytest.approx([20., 20.])
    half_width = 1.96 * np.std([10., 30.], ddof=1) / np.sqrt(2)
    assert df["lower"].iloc[0] == pytest.approx(20 - half_width)
    assert df["upper"].iloc[0] == pytest.approx(20 + half_width)


def test_summarize_estimates():
    res = {SimulationParameters(0.1, 30, simulation_id=i): make_estimate(0.05, 0.15) for i in (1, 2)}
    df = summarize_estimates(res)
    assert df.loc[0, "n"] == 2
    assert df.loc[0, "rel_effect"] == pytest.approx(0.1)
    assert df.loc[0, "interval_width"] == pytest.approx(0.1)
