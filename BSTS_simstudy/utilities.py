# utilities.py
import hashlib
import os

import numpy as np
import yaml

# two-sided 95% normal quantile used for the frequentist intervals
Z_95 = 1.96

CONFIG_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "sim_impact")


def load_config(name: str, section: str = None, **overrides) -> dict:
    """
    Read one of the yaml configuration files shipped with the package.

    Args:
        name (str): file name in the sim_impact folder, e.g. "model_config.yaml".
        section (str, optional): top level key to return. Defaults to the whole file.
        **overrides: entries replacing the ones read from the file.

    Returns:
        dict: configuration
    """
    path = os.path.join(CONFIG_DIR, name)
    with open(path, 'r') as file:
        config = yaml.safe_load(file) or {}

    if section is not None:
        if section not in config:
            raise ValueError(f"Section {section} not found in {name}, available sections are {list(config.keys())}")
        config = config[section]

    config = dict(config)
    config.update(overrides)
    return config


def derive_seed(values, base_seed: int = 0) -> int:
    """Derive a 63 bits seed from a tuple of values. Independent of the python hash randomization."""
    payload = "|".join([str(base_seed)] + [repr(v) for v in values])
    digest = hashlib.sha256(payload.encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big") >> 1


def sinusoid(t: np.ndarray, period: float, amplitude: float = 1.) -> np.ndarray:
    return amplitude * np.sin(2 * np.pi * np.asarray(t, dtype=float) / period)


def random_walk(start: float, steps: np.ndarray) -> np.ndarray:
    """Cumulate the increments on top of the starting value. steps[0] is the move into the first time step."""
    return start + np.cumsum(steps)


def normal_interval(values, z: float = Z_95):
    """
    Mean and normal approximation interval of the sample mean.

    Returns:
        tuple: (n, mean, lower, upper). Bounds are nan for less than 2 values.
    """
    values = np.asarray(values, dtype=float)
    values = values[~np.isnan(values)]
    n = len(values)
    if n == 0:
        return 0, np.nan, np.nan, np.nan
    mean = values.mean()
    if n < 2:
        return n, mean, np.nan, np.nan
    se = values.std(ddof=1) / np.sqrt(n)
    return n, mean, mean - z * se, mean + z * se

