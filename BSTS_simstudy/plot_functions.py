
import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
import seaborn as sns

from BSTS_simstudy.synthetic_ts import PRE_PERIOD_LENGTH


def plot_simulated_series(series, components=True):
    """
    Plot one simulated trial: observed response, counterfactual and (optionally) the generating components.

    Args:
        series (SyntheticSeries): generated trial.
        components (bool, optional): add panels with predictors, coefficients and level. Defaults to True.

    Returns:
        pyplot fig object
    """
    df = series.data
    intervention = series.params.post_period[0]
    n_rows = 3 if components else 1

    fig, axes = plt.subplots(n_rows, 1, figsize=(12, 3 * n_rows + 1), sharex=True, squeeze=False)
    axes = axes[:, 0]

    axes[0].plot(df.index, df["y"], label="Observed", color="black")
    axes[0].plot(df.index, df["counterfactual"], label="Counterfactual", color="black", linestyle="--")
    axes[0].axvline(intervention, color="gray")
    axes[0].set_ylabel("Response")
    axes[0].legend()

    if components:
        axes[1].plot(df.index, df["x1"], label="x1")
        axes[1].plot(df.index, df["x2"], label="x2")
        axes[1].plot(df.index, df["beta1"], label="beta1", linestyle="--")
        axes[1].plot(df.index, df["beta2"], label="beta2", linestyle="--")
        axes[1].axvline(intervention, color="gray")
        axes[1].set_ylabel("Predictors and coefficients")
        axes[1].legend()

        axes[2].plot(df.index, df["mu"], label="Level", color="green")
        axes[2].axvline(intervention, color="gray")
        axes[2].set_ylabel("Level")
        axes[2].legend()

    axes[-1].set_xlabel("Time step")

    plt.tight_layout()
    plt.close()
    return fig


def plot_estimate(estimate, counterfactual=None):
    """
    Observed vs predicted, pointwise and cumulative effect of one trial. Needs the per time step series.

    Returns:
        pyplot fig object
    """
    if not estimate.has_series:
        raise ValueError("The estimate does not hold the per time step series, run the sweep with keep_series=True")

    df = estimate.series
    x = df.index
    intervention = x[PRE_PERIOD_LENGTH] if len(x) > PRE_PERIOD_LENGTH else x[-1]

    fig, axes = plt.subplots(3, 1, figsize=(12, 10), sharex=True)

    axes[0].plot(x, df["response"], label="Actuals", color="black")
    axes[0].plot(x, df["point_pred"], label="Predicted", color="blue")
    axes[0].fill_between(x, df["point_pred_lower"], df["point_pred_upper"], color="blue", alpha=0.2)
    if counterfactual is not None:
        axes[0].plot(x, counterfactual, label="Counterfactual", color="black", linestyle="--")
    axes[0].set_ylabel("Observed vs Predicted")
    axes[0].legend()

    axes[1].plot(x, df["point_effect"], label="Effect", color="purple")
    axes[1].fill_between(x, df["point_effect_lower"], df["point_effect_upper"], color="blue", alpha=0.2)
    axes[1].axhline(0, color="black", linestyle="--")
    axes[1].set_ylabel("Pointwise Effect")
    axes[1].legend()

    axes[2].plot(x, df["cum_effect"], label="Cumulative Effect", color="green")
    axes[2].fill_between(x, df["cum_effect_lower"], df["cum_effect_upper"], color="blue", alpha=0.2)
    axes[2].axhline(0, color="black", linestyle="--")
    axes[2].set_ylabel("Cumulative Effect")
    axes[2].set_xlabel("Time step")
    axes[2].legend()

    for ax in axes:
        ax.axvline(intervention)

    plt.tight_layout()
    plt.close()
    return fig


def plot_interval_vs_effect(summary, x="effect_size", hue=None):
    """
    Estimated relative effect with its average interval against the true effect size (or the duration).

    Args:
        summary (pd.DataFrame): output of sim_aggregate.summarize_estimates.
        x (str, optional): column on the x axis. Defaults to "effect_size".
        hue (str, optional): column splitting the lines.

    Returns:
        pyplot fig object
    """
    fig, ax = plt.subplots()
    groups = [(None, summary)] if hue is None else list(summary.groupby(hue))
    colors = plt.rcParams['axes.prop_cycle'].by_key()['color']

    for (label, df), col in zip(groups, colors * (len(groups) // len(colors) + 1)):
        df = df.sort_values(x)
        ax.plot(df[x], df["rel_effect"] * 100, 'o-', color=col,
                label="Estimated rel. effect" if label is None else f"{hue}={label}")
        ax.fill_between(df[x], df["rel_effect_lower"] * 100, df["rel_effect_upper"] * 100, color=col, alpha=0.2)

    if x == "effect_size":
        true = np.sort(summary[x].unique())
        ax.plot(true, true * 100, 'k--', label="True rel. effect")

    ax.axhline(0, color="black")
    ax.set_xlabel(x.replace("_", " "))
    ax.set_ylabel("Relative effect (%)")
    ax.legend()
    plt.close()

    return fig


def plot_rates(table, x="effect_size", hue=None, ylabel="Rate", nominal=None):
    """
    Rejection rates or coverage with the Bayesian credible and the frequentist (Wald) intervals.

    Args:
        table (pd.DataFrame): output of sim_aggregate.to_frame.
        x (str, optional): column on the x axis.
        hue (str, optional): column splitting the lines.
        ylabel (str, optional): y axis label.
        nominal (float, optional): draw a horizontal line at this rate (e.g. 0.95 for coverage).

    Returns:
        pyplot fig object
    """
    long = pd.concat([
        table.assign(method="Bayesian", estimate=table["bayes_mean"],
                     lower=table["bayes_lower"], upper=table["bayes_upper"]),
        table.assign(method="Frequentist", estimate=table["freq_mean"],
                     lower=table["freq_lower"], upper=table["freq_upper"]),
    ], ignore_index=True)

    fig, ax = plt.subplots()
    sns.lineplot(data=long, x=x, y="estimate", hue="method", style=hue, marker="o", errorbar=None, ax=ax)

    for method, df in long.groupby("method"):
        for _, sub in (df.groupby(hue) if hue else [(None, df)]):
            sub = sub.sort_values(x)
            ax.fill_between(sub[x], sub["lower"], sub["upper"], alpha=0.15)

    if nominal is not None:
        ax.axhline(nominal, color="black", linestyle="--")

    ax.set_ylim(-0.05, 1.05)
    ax.set_xlabel(x.replace("_", " "))
    ax.set_ylabel(ylabel)
    plt.close()

    return fig


def plot_pointwise_error(errors, hue="structural_change_sd"):
    """
    Mean absolute percentage error of the pointwise effect per day after the intervention.

    Args:
        errors (pd.DataFrame): output of sim_aggregate.pointwise_error.
        hue (str, optional): column splitting the lines. Defaults to "structural_change_sd".

    Returns:
        pyplot fig object
    """
    fig, ax = plt.subplots()
    colors = plt.rcParams['axes.prop_cycle'].by_key()['color']

    for (label, df), col in zip(errors.groupby(hue), colors * (errors[hue].nunique() // len(colors) + 1)):
        ax.plot(df["day"], df["mape"], color=col, label=f"{label}")
        ax.fill_between(df["day"], df["lower"], df["upper"], color=col, alpha=0.2)

    ax.set_xlabel("Days after intervention")
    ax.set_ylabel("MAPE of the pointwise effect (%)")
    ax.legend(title=hue.replace("_", " "))
    plt.close()

    return fig
