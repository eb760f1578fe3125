# synthetic_ts.py
from dataclasses import dataclass

import numpy as np
import pandas as pd

from BSTS_simstudy.utilities import derive_seed, random_walk, sinusoid

PRE_PERIOD_LENGTH = 365
# days after the intervention at which the coefficients may become more volatile
STRUCTURAL_CHANGE_DELAY = 90

PREDICTOR_PERIODS = (90, 360)
COEF_START = 1.
COEF_SD = 0.01
# the paper states mu_0 = 0, which contradicts its own figures and makes a multiplicative effect meaningless
LEVEL_START = 20.
LEVEL_SD = 0.1
NOISE_SD = 0.1

COLUMNS = ["x1", "x2", "beta1", "beta2", "mu", "eps", "signal", "counterfactual", "y"]


class GenerationError(ValueError):
    pass


@dataclass(frozen=True)
class SimulationParameters:
    """One simulated trial. Two instances with the same values describe the same synthetic series."""

    effect_size: float
    campaign_duration: int
    structural_change_sd: float = COEF_SD
    simulation_id: int = 1
    pre_period_length: int = PRE_PERIOD_LENGTH

    def __post_init__(self):
        # normalise the types so that equal settings compare and hash equally
        try:
            object.__setattr__(self, "effect_size", float(self.effect_size))
            object.__setattr__(self, "structural_change_sd", float(self.structural_change_sd))
        except (TypeError, ValueError) as err:
            raise GenerationError(f"Effect size and structural change sd must be numbers, got {self.effect_size!r}, {self.structural_change_sd!r}") from err

        for name in ("campaign_duration", "simulation_id", "pre_period_length"):
            value = getattr(self, name)
            try:
                is_int = not isinstance(value, (bool, str)) and int(value) == value
            except (TypeError, ValueError, OverflowError):
                is_int = False
            if not is_int:
                raise GenerationError(f"{name} must be an integer, got {value!r}")
            object.__setattr__(self, name, int(value))

        if not np.isfinite(self.effect_size) or self.effect_size < 0:
            raise GenerationError(f"Effect size must be a non-negative number, got {self.effect_size}")
        if self.campaign_duration < 1:
            raise GenerationError(f"Campaign duration must be a positive number of days, got {self.campaign_duration}")
        if not np.isfinite(self.structural_change_sd) or self.structural_change_sd <= 0:
            raise GenerationError(f"Structural change sd must be positive, got {self.structural_change_sd}")
        if self.simulation_id < 1:
            raise GenerationError(f"Simulation id must be a positive integer, got {self.simulation_id}")
        if self.pre_period_length != PRE_PERIOD_LENGTH:
            raise GenerationError(f"The pre-period is fixed to {PRE_PERIOD_LENGTH} days, got {self.pre_period_length}")

    @property
    def n_obs(self):
        return self.pre_period_length + self.campaign_duration

    @property
    def has_structural_change(self):
        return self.structural_change_sd != COEF_SD

    @property
    def pre_period(self):
        return [1, self.pre_period_length]

    @property
    def post_period(self):
        return [self.pre_period_length + 1, self.n_obs]

    @property
    def as_tuple(self):
        return (self.effect_size, self.campaign_duration, self.structural_change_sd, self.simulation_id)

    @property
    def key(self):
        """File system friendly identifier."""
        return f"e{self.effect_size!r}_d{self.campaign_duration}_c{self.structural_change_sd!r}_sim{self.simulation_id}"

    def seed(self, base_seed=0):
        return derive_seed(self.as_tuple, base_seed=base_seed)


class SyntheticSeries:
    """
    Generated data of one trial: a DataFrame indexed by the time step t = 1..365+d.

    Columns:
        x1, x2: predictors (sinusoids with period 90 and 360)
        beta1, beta2: time varying regression coefficients
        mu: level
        eps: observation noise
        signal: beta1*x1 + beta2*x2 + mu
        counterfactual: signal + eps, i.e. the response without intervention
        y: observed response, counterfactual scaled by (1+e) after the intervention
    """

    def __init__(self, params: SimulationParameters, data: pd.DataFrame, seed: int):
        self.params = params
        self.data = data
        self.seed = seed

    def __len__(self):
        return len(self.data)

    @property
    def response(self):
        return self.data["y"]

    @property
    def predictors(self):
        return self.data[["x1", "x2"]]

    @property
    def model_data(self):
        """Response followed by the predictors, as consumed by the estimators."""
        return self.data[["y", "x1", "x2"]]

    @property
    def pre_data(self):
        return self.data.loc[self.params.pre_period[0]:self.params.pre_period[1]]

    @property
    def post_data(self):
        return self.data.loc[self.params.post_period[0]:self.params.post_period[1]]

    @property
    def true_effect(self):
        """Pointwise effect of the intervention on the post-period, y*e/(1+e)."""
        e = self.params.effect_size
        y = self.post_data["y"]
        return y / (1 + e) * e


def coefficient_step_sd(params: SimulationParameters) -> np.ndarray:
    """Standard deviation of the coefficient increment at each time step (no increment into t=1)."""
    t = np.arange(1, params.n_obs + 1)
    sd = np.where(t > params.pre_period_length + STRUCTURAL_CHANGE_DELAY, params.structural_change_sd, COEF_SD)
    sd[0] = 0.
    return sd


def generate(params: SimulationParameters, base_seed: int = 0, seed: int = None) -> SyntheticSeries:
    """
    Simulate the observed series of one trial.

    The random stream only depends on the seed (derived from the parameters by default), and the draws are
    always made in the same order: beta1 steps, beta2 steps, mu steps, noise.

    Args:
        params (SimulationParameters): trial settings.
        base_seed (int, optional): mixed into the derived seed. Defaults to 0.
        seed (int, optional): explicit seed, bypasses the derivation from the parameters.

    Returns:
        SyntheticSeries
    """
    if not isinstance(params, SimulationParameters):
        raise GenerationError(f"Expected SimulationParameters, got {type(params).__name__}")

    seed = params.seed(base_seed) if seed is None else seed
    rng = np.random.default_rng(seed)

    n = params.n_obs
    t = np.arange(1, n + 1)
    z = rng.standard_normal(size=(4, n))

    x1 = sinusoid(t, PREDICTOR_PERIODS[0])
    x2 = sinusoid(t, PREDICTOR_PERIODS[1])

    step_sd = coefficient_step_sd(params)
    beta1 = random_walk(COEF_START, z[0] * step_sd)
    beta2 = random_walk(COEF_START, z[1] * step_sd)

    level_sd = np.full(n, LEVEL_SD)
    level_sd[0] = 0.
    mu = random_walk(LEVEL_START, z[2] * level_sd)

    eps = z[3] * NOISE_SD

    signal = beta1 * x1 + beta2 * x2 + mu
    counterfactual = signal + eps

    scale = np.where(t > params.pre_period_length, 1 + params.effect_size, 1.)
    y = counterfactual * scale

    data = pd.DataFrame({"x1": x1, "x2": x2, "beta1": beta1, "beta2": beta2, "mu": mu, "eps": eps,
                         "signal": signal, "counterfactual": counterfactual, "y": y},
                        index=pd.Index(t, name="t"))

    return SyntheticSeries(params, data[COLUMNS], seed)


def make_simulated_data(params_list, base_seed=0):
    """
    Stack several simulated trials in a long DataFrame (one row per trial and time step), used for illustrations.
    """
    frames = []
    for params in params_list:
        df = generate(params, base_seed=base_seed).data.reset_index()
        df["effect_size"] = params.effect_size
        df["campaign_duration"] = params.campaign_duration
        df["structural_change_sd"] = params.structural_change_sd
        df["simulation_id"] = params.simulation_id
        frames.append(df)

    if not frames:
        return pd.DataFrame(columns=["t"] + COLUMNS)

    return pd.concat(frames, ignore_index=True)
