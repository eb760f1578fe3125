import matplotlib
matplotlib.use("Agg")

import numpy as np
import pandas as pd
import pytest

from BSTS_simstudy.sim_impact.causal_impact_base import EffectEstimate, EstimationFailure, SERIES_COLUMNS


class FakeEstimator:
    """Uses the true counterfactual as prediction, +-0.5 around it. Fails on the listed simulation ids."""

    def __init__(self, fail_ids=(), error=EstimationFailure):
        self.calls = []
        self.fail_ids = set(fail_ids)
        self.error = error

    def __call__(self, series, keep_series=False):
        params = series.params
        self.calls.append(params)
        if params.simulation_id in self.fail_ids:
            raise self.error(f"no convergence for {params.key}")

        post = series.post_data
        effect = (post["y"] - post["counterfactual"]).to_numpy()
        mean_pred = post["counterfactual"].mean()
        avg = effect.mean()

        frame = None
        if keep_series:
            data = series.data
            pred = data["counterfactual"].to_numpy()
            point_effect = data["y"].to_numpy() - pred
            frame = pd.DataFrame({
                "response": data["y"].to_numpy(),
                "point_pred": pred,
                "point_pred_lower": pred - 0.5,
                "point_pred_upper": pred + 0.5,
                "point_effect": point_effect,
                "point_effect_lower": point_effect - 0.5,
                "point_effect_upper": point_effect + 0.5,
                "cum_effect": np.cumsum(point_effect),
                "cum_effect_lower": np.cumsum(point_effect - 0.5),
                "cum_effect_upper": np.cumsum(point_effect + 0.5),
            }, index=data.index)[SERIES_COLUMNS]

        return EffectEstimate(average=avg, average_lower=avg - 0.5, average_upper=avg + 0.5,
                              cumulative=effect.sum(), cumulative_lower=effect.sum() - 0.5 * len(effect),
                              cumulative_upper=effect.sum() + 0.5 * len(effect),
                              rel_average=avg / mean_pred, rel_average_lower=(avg - 0.5) / mean_pred,
                              rel_average_upper=(avg + 0.5) / mean_pred, series=frame)


@pytest.fixture
def fake_estimator():
    return FakeEstimator()


def make_estimate(lower, upper, rel_lower=None, rel_upper=None, point=None):
    point = (lower + upper) / 2 if point is None else point
    rel_lower = lower if rel_lower is None else rel_lower
    rel_upper = upper if rel_upper is None else rel_upper
    return EffectEstimate(average=point, average_lower=lower, average_upper=upper,
                          cumulative=point * 10, cumulative_lower=lower * 10, cumulative_upper=upper * 10,
                          rel_average=(rel_lower + rel_upper) / 2, rel_average_lower=rel_lower,
                          rel_average_upper=rel_upper)
