from dataclasses import dataclass, asdict, field, replace
from typing import Optional

import numpy as np
import pandas as pd

SERIES_COLUMNS = ["response", "point_pred", "point_pred_lower", "point_pred_upper",
                  "point_effect", "point_effect_lower", "point_effect_upper",
                  "cum_effect", "cum_effect_lower", "cum_effect_upper"]


class EstimationFailure(RuntimeError):
    pass


@dataclass(frozen=True)
class EffectEstimate:
    """Effect of the intervention over the post-period, as estimated for one trial."""

    average: float
    average_lower: float
    average_upper: float
    cumulative: float
    cumulative_lower: float
    cumulative_upper: float
    rel_average: float
    rel_average_lower: float
    rel_average_upper: float
    p_value: Optional[float] = None
    # per time step results on the whole series, see SERIES_COLUMNS
    series: Optional[pd.DataFrame] = field(default=None, compare=False, repr=False)

    def summary(self):
        """Copy without the per time step series."""
        return replace(self, series=None)

    def to_dict(self):
        res = asdict(self.summary())
        res.pop("series")
        return res

    @property
    def has_series(self):
        return self.series is not None


@dataclass(frozen=True)
class TrialFailure:
    """Stored instead of an estimate when the estimator could not produce one."""

    reason: str
    error_type: str = "EstimationFailure"

    @classmethod
    def from_exception(cls, err):
        cause = err.__cause__ or err
        return cls(reason=str(cause) or repr(cause), error_type=type(cause).__name__)


def effect_from_summary(summary_data, inferences=None, response=None, p_value=None, keep_series=False):
    """
    Build an EffectEstimate from the outputs of tfcausalimpact.

    Args:
        summary_data (pd.DataFrame): columns "average" and "cumulative", rows abs_effect, rel_effect and bounds.
        inferences (pd.DataFrame, optional): per time step predictions and effects.
        response (pd.Series, optional): observed values aligned with inferences.
        p_value (float, optional): posterior tail area probability.
        keep_series (bool, optional): store the per time step results. Defaults to False.

    Returns:
        EffectEstimate
    """
    avg = summary_data["average"]
    cum = summary_data["cumulative"]

    series = None
    if keep_series:
        if inferences is None or response is None:
            raise ValueError("Per time step results need the inferences and the response")
        series = pd.DataFrame({
            "response": np.asarray(response, dtype=float),
            "point_pred": inferences["complete_preds_means"].to_numpy(),
            "point_pred_lower": inferences["complete_preds_lower"].to_numpy(),
            "point_pred_upper": inferences["complete_preds_upper"].to_numpy(),
            "point_effect": inferences["point_effects_means"].to_numpy(),
            "point_effect_lower": inferences["point_effects_lower"].to_numpy(),
            "point_effect_upper": inferences["point_effects_upper"].to_numpy(),
            "cum_effect": inferences["post_cum_effects_means"].to_numpy(),
            "cum_effect_lower": inferences["post_cum_effects_lower"].to_numpy(),
            "cum_effect_upper": inferences["post_cum_effects_upper"].to_numpy(),
        }, index=inferences.index)

    return EffectEstimate(
        average=float(avg.loc["abs_effect"]),
        average_lower=float(avg.loc["abs_effect_lower"]),
        average_upper=float(avg.loc["abs_effect_upper"]),
        cumulative=float(cum.loc["abs_effect"]),
        cumulative_lower=float(cum.loc["abs_effect_lower"]),
        cumulative_upper=float(cum.loc["abs_effect_upper"]),
        rel_average=float(avg.loc["rel_effect"]),
        rel_average_lower=float(avg.loc["rel_effect_lower"]),
        rel_average_upper=float(avg.loc["rel_effect_upper"]),
        p_value=None if p_value is None else float(p_value),
        series=series)


class CausalImpactBase:
    """
    Common lifecycle of the estimator backends: fit on the pre-period, predict the post-period counterfactual,
    turn predictions into effect estimates.

    Backends (mixins) implement fit() and predict(), which must set
    pred_pre (pre-period fitted values), pred_mean and pred_ci (post-period forecast and its (n, 2) bounds).
    """

    # errors of the numerical backends reported as EstimationFailure
    backend_errors = (ValueError, ArithmeticError, np.linalg.LinAlgError, RuntimeError)

    def __init__(self, data, pre_period, post_period, alpha=0.05):

        if not 0 < alpha < 1:
            raise ValueError(f"alpha must be between 0 and 1, got {alpha}")

        self.data = data
        self.alpha = alpha

        self.pre_period = pre_period
        self.post_period = post_period

        self.pre_data = data.loc[pre_period[0]:pre_period[1]]
        self.post_data = data.loc[post_period[0]:post_period[1]]

        if len(self.pre_data) == 0 or len(self.post_data) == 0:
            raise ValueError(f"Empty pre or post period: {pre_period}, {post_period}")
        if self.pre_data.isna().any().any():
            raise ValueError("Nan detected in the pre-period data. Fill missing values first")

        self.target = self.data.iloc[:, 0]
        self.npre = len(self.pre_data)

        self.model = None
        self.model_results = None
        self.pred_pre = None
        self.pred_mean = None
        self.pred_ci = None

    def run(self, model_kwargs=None, keep_series=False):
        """Fit, predict and return the EffectEstimate. Backend errors are raised as EstimationFailure."""
        try:
            self.fit(model_kwargs=model_kwargs)
            self.predict()
            return self.get_estimate(keep_series=keep_series)
        except EstimationFailure:
            raise
        except self.backend_errors as err:
            raise EstimationFailure(f"{type(self).__name__} failed: {err}") from err

    def get_estimate(self, keep_series=False):
        """
        Effect estimates from the counterfactual forecast. The bounds of the average and cumulative effects are
        the averaged and cumulated pointwise bounds.
        """
        if self.pred_mean is None:
            raise ValueError("Model has not been fitted yet, call run()")

        actual = self.post_data.iloc[:, 0].to_numpy(dtype=float)
        pred_mean = np.asarray(self.pred_mean, dtype=float)
        pred_ci = np.asarray(self.pred_ci, dtype=float)

        # effect bounds: observed minus the upper/lower prediction bounds
        effect = actual - pred_mean
        effect_ci = actual.reshape(-1, 1) - pred_ci[:, ::-1]
        cum_ci = effect_ci.cumsum(axis=0)

        mean_pred = pred_mean.mean()
        if mean_pred == 0:
            raise EstimationFailure("Predicted counterfactual averages to 0, relative effect undefined")

        avg = effect.mean()
        avg_lower, avg_upper = effect_ci.mean(axis=0)

        series = None
        if keep_series:
            series = self._full_series(pred_mean, pred_ci, effect, effect_ci, cum_ci)

        return EffectEstimate(
            average=float(avg),
            average_lower=float(avg_lower),
            average_upper=float(avg_upper),
            cumulative=float(effect.sum()),
            cumulative_lower=float(cum_ci[-1, 0]),
            cumulative_upper=float(cum_ci[-1, 1]),
            rel_average=float(avg / mean_pred),
            rel_average_lower=float(avg_lower / mean_pred),
            rel_average_upper=float(avg_upper / mean_pred),
            series=series)

    def _full_series(self, pred_mean, pred_ci, effect, effect_ci, cum_ci):

        npre = self.npre
        pre_pred = np.asarray(self.pred_pre, dtype=float) if self.pred_pre is not None else np.full(npre, np.nan)
        nan_pre = np.full(npre, np.nan)
        zeros_pre = np.zeros(npre)
        pre_response = self.pre_data.iloc[:, 0].to_numpy(dtype=float)

        index = self.pre_data.index.append(self.post_data.index)
        return pd.DataFrame({
            "response": np.concatenate([pre_response, self.post_data.iloc[:, 0].to_numpy(dtype=float)]),
            "point_pred": np.concatenate([pre_pred, pred_mean]),
            "point_pred_lower": np.concatenate([nan_pre, pred_ci[:, 0]]),
            "point_pred_upper": np.concatenate([nan_pre, pred_ci[:, 1]]),
            "point_effect": np.concatenate([pre_response - pre_pred, effect]),
            "point_effect_lower": np.concatenate([nan_pre, effect_ci[:, 0]]),
            "point_effect_upper": np.concatenate([nan_pre, effect_ci[:, 1]]),
            "cum_effect": np.concatenate([zeros_pre, effect.cumsum()]),
            "cum_effect_lower": np.concatenate([zeros_pre, cum_ci[:, 0]]),
            "cum_effect_upper": np.concatenate([zeros_pre, cum_ci[:, 1]]),
        }, index=index)[SERIES_COLUMNS]
