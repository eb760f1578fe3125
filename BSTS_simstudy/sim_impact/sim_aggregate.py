# sim_aggregate.py
"""
Statistics over repeated simulations: rejection rates, interval coverage and pointwise errors.

Proportions are reported twice: as the posterior of a Binomial proportion under a uniform Beta(1, 1) prior,
and as the maximum likelihood estimate with a Wald interval.
"""
from dataclasses import dataclass, asdict

import numpy as np
import pandas as pd
from scipy.stats import beta

from BSTS_simstudy.sim_impact.causal_impact_base import EffectEstimate
from BSTS_simstudy.utilities import Z_95, normal_interval

PARAM_FIELDS = ("effect_size", "campaign_duration", "structural_change_sd", "simulation_id")


@dataclass(frozen=True)
class AggregateStatistic:
    n: int
    successes: int
    rate: float
    bayes_mean: float
    bayes_lower: float
    bayes_upper: float
    freq_mean: float
    freq_lower: float
    freq_upper: float

    def to_dict(self):
        return asdict(self)


def beta_binomial_interval(successes, n, level=0.95, prior=(1., 1.)):
    """Posterior mean and equal tailed credible interval of a Binomial proportion with a Beta prior."""
    a = prior[0] + successes
    b = prior[1] + n - successes
    tail = (1 - level) / 2
    return a / (a + b), float(beta.ppf(tail, a, b)), float(beta.ppf(1 - tail, a, b))


def wald_interval(successes, n, z=Z_95):
    """MLE of a Binomial proportion and its Wald interval (not clipped to [0, 1])."""
    if n == 0:
        return np.nan, np.nan, np.nan
    p = successes / n
    half_width = z * np.sqrt(p * (1 - p) / n)
    return p, p - half_width, p + half_width


def proportion_statistic(successes, n):
    bayes_mean, bayes_lower, bayes_upper = beta_binomial_interval(successes, n)
    freq_mean, freq_lower, freq_upper = wald_interval(successes, n)
    return AggregateStatistic(n=n, successes=successes, rate=freq_mean,
                              bayes_mean=bayes_mean, bayes_lower=bayes_lower, bayes_upper=bayes_upper,
                              freq_mean=freq_mean, freq_lower=freq_lower, freq_upper=freq_upper)


# decision rules: (SimulationParameters, EffectEstimate) -> bool

def rejects_null(params, estimate):
    """The 95% interval of the average effect lies above zero."""
    return estimate.average_lower > 0


def covers_truth(params, estimate):
    """The true relative effect lies within the interval of the average relative effect."""
    return estimate.rel_average_lower <= params.effect_size <= estimate.rel_average_upper


def _group_fields(group_by):
    group_by = (group_by,) if isinstance(group_by, str) else tuple(group_by)
    unknown = [g for g in group_by if g not in PARAM_FIELDS]
    if unknown:
        raise ValueError(f"Cannot group by {unknown}, available fields are {list(PARAM_FIELDS)}")
    return group_by


def _group_key(params, group_by):
    key = tuple(getattr(params, g) for g in group_by)
    return key[0] if len(key) == 1 else key


def group_results(results, group_by):
    """
    Successful estimates split by the values of the group_by fields. Failed or missing results are dropped.

    Returns:
        dict: group key -> list of (SimulationParameters, EffectEstimate), keys sorted.
    """
    group_by = _group_fields(group_by)
    items = results.items() if hasattr(results, "items") else results

    groups = {}
    for params, estimate in items:
        if not isinstance(estimate, EffectEstimate):
            continue
        groups.setdefault(_group_key(params, group_by), []).append((params, estimate))

    return {k: groups[k] for k in sorted(groups)}


def aggregate(results, group_by, decision_rule):
    """
    Proportion of trials satisfying the decision rule in each group.

    Args:
        results: mapping (or iterable of pairs) SimulationParameters -> EffectEstimate.
        group_by (str or list): fields of SimulationParameters defining the groups.
        decision_rule (callable): (params, estimate) -> bool.

    Returns:
        dict: group key -> AggregateStatistic. The key is a tuple unless a single field is given.
    """
    res = {}
    for key, trials in group_results(results, group_by).items():
        successes = sum(bool(decision_rule(params, estimate)) for params, estimate in trials)
        res[key] = proportion_statistic(successes, len(trials))
    return res


def rejection_rates(results, group_by=("effect_size", "campaign_duration")):
    return aggregate(results, group_by, rejects_null)


def coverage(results, group_by=("effect_size", "campaign_duration")):
    return aggregate(results, group_by, covers_truth)


def to_frame(stats, group_by):
    """Table of aggregated statistics, one row per group."""
    group_by = _group_fields(group_by)
    rows = []
    for key, stat in stats.items():
        key = key if isinstance(key, tuple) else (key,)
        row = dict(zip(group_by, key))
        row.update(stat.to_dict())
        rows.append(row)
    columns = list(group_by) + list(AggregateStatistic.__dataclass_fields__)
    return pd.DataFrame(rows, columns=columns)


def pointwise_error(results, group_by=("structural_change_sd",)):
    """
    Mean absolute percentage error of the estimated pointwise effect against the true effect y*e/(1+e),
    for each day after the intervention, with a normal approximation 95% interval over trials.

    Trials without per time step series, or without effect (e = 0), are skipped.

    Returns:
        pd.DataFrame: group fields, day, n, mape, lower, upper.
    """
    group_by = _group_fields(group_by)
    rows = []
    for key, trials in group_results(results, group_by).items():
        errors = []
        for params, estimate in trials:
            if not estimate.has_series or params.effect_size == 0:
                continue
            post = estimate.series.iloc[params.pre_period_length:]
            e = params.effect_size
            true_effect = post["response"].to_numpy() / (1 + e) * e
            ape = np.abs(post["point_effect"].to_numpy() - true_effect) / np.abs(true_effect) * 100
            errors.append(ape)

        if not errors:
            continue

        # trials of one group may have different durations, align on the day after the intervention
        n_days = max(len(a) for a in errors)
        padded = np.full((len(errors), n_days), np.nan)
        for i, a in enumerate(errors):
            padded[i, :len(a)] = a

        key = key if isinstance(key, tuple) else (key,)
        for day in range(n_days):
            n, mean, lower, upper = normal_interval(padded[:, day])
            row = dict(zip(group_by, key))
            row.update({"day": day + 1, "n": n, "mape": mean, "lower": lower, "upper": upper})
            rows.append(row)

    return pd.DataFrame(rows, columns=list(group_by) + ["day", "n", "mape", "lower", "upper"])


def summarize_estimates(results, group_by=("effect_size", "campaign_duration")):
    """Average relative effect estimate and average interval per group."""
    group_by = _group_fields(group_by)
    rows = []
    for key, trials in group_results(results, group_by).items():
        rel = np.array([[est.rel_average, est.rel_average_lower, est.rel_average_upper] for _, est in trials])
        key = key if isinstance(key, tuple) else (key,)
        row = dict(zip(group_by, key))
        row.update({"n": len(trials),
                    "rel_effect": rel[:, 0].mean(),
                    "rel_effect_lower": rel[:, 1].mean(),
                    "rel_effect_upper": rel[:, 2].mean(),
                    "interval_width": (rel[:, 2] - rel[:, 1]).mean()})
        rows.append(row)

    return pd.DataFrame(rows, columns=list(group_by) + ["n", "rel_effect", "rel_effect_lower",
                                                        "rel_effect_upper", "interval_width"])
