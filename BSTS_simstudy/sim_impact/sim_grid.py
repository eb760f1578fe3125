# sim_grid.py
import itertools

import numpy as np

from BSTS_simstudy.synthetic_ts import COEF_SD, GenerationError, SimulationParameters
from BSTS_simstudy.utilities import load_config


class GridError(GenerationError):
    pass


def cross_section(anchor_effect, anchor_duration):
    """Keep the effect size sweep at the anchor duration and the duration sweep at the anchor effect size."""
    anchor_effect = float(anchor_effect)
    anchor_duration = int(anchor_duration)

    def keep(params):
        return params.effect_size == anchor_effect or params.campaign_duration == anchor_duration

    keep.__name__ = f"cross_section({anchor_effect}, {anchor_duration})"
    return keep


def min_duration(days):
    """Keep campaigns lasting at least `days` days."""
    days = int(days)

    def keep(params):
        return params.campaign_duration >= days

    keep.__name__ = f"min_duration({days})"
    return keep


def where(predicate):
    if not callable(predicate):
        raise GridError(f"Filter must be callable, got {predicate!r}")
    return predicate


class SimGrid:
    """
    Declarative sweep: Cartesian product of the settings, narrowed by filters.

    Args:
        effect_sizes (list): relative effects e applied after the intervention.
        durations (list): campaign lengths d in days.
        structural_change_sds (list, optional): coefficient step sd after 365+90. Defaults to the baseline 0.01.
        n_simulations (int, optional): independent draws per setting. Defaults to 1.
        filters (list, optional): predicates on SimulationParameters, all must hold.
    """

    def __init__(self, effect_sizes, durations, structural_change_sds=(COEF_SD,), n_simulations=1, filters=()):

        self.effect_sizes = self._values("effect_sizes", effect_sizes)
        self.durations = self._values("durations", durations)
        self.structural_change_sds = self._values("structural_change_sds", structural_change_sds)

        if isinstance(n_simulations, bool) or int(n_simulations) != n_simulations or n_simulations < 1:
            raise GridError(f"n_simulations must be a positive integer, got {n_simulations!r}")
        self.n_simulations = int(n_simulations)

        self.filters = [where(f) for f in filters]

    @staticmethod
    def _values(name, values):
        values = list(np.atleast_1d(values).tolist())
        if not values:
            raise GridError(f"Empty list of {name}")
        return values

    def params(self):
        """Ordered list of distinct SimulationParameters of the sweep."""
        seen = set()
        res = []
        settings = itertools.product(self.effect_sizes, self.durations, self.structural_change_sds,
                                     range(1, self.n_simulations + 1))
        for e, d, c, sim_id in settings:
            try:
                params = SimulationParameters(e, d, c, sim_id)
            except GenerationError as err:
                raise GridError(f"Invalid grid entry (e={e}, d={d}, c={c}): {err}") from err
            if params in seen or not all(f(params) for f in self.filters):
                continue
            seen.add(params)
            res.append(params)
        return res

    def __iter__(self):
        return iter(self.params())

    def __len__(self):
        return len(self.params())

    def __repr__(self):
        filters = [getattr(f, "__name__", repr(f)) for f in self.filters]
        return (f"SimGrid(effect_sizes={self.effect_sizes}, durations={self.durations}, "
                f"structural_change_sds={self.structural_change_sds}, n_simulations={self.n_simulations}, "
                f"filters={filters})")

    @classmethod
    def from_config(cls, scenario, **overrides):
        """
        Grid of one of the scenarios of sim_config.yaml ("effect_size", "duration", "structural_change").
        """
        config = load_config("sim_config.yaml", section=scenario, **overrides)

        filters = list(config.pop("filters", []))
        cross = config.pop("cross_section", None)
        if cross:
            filters.append(cross_section(**cross))
        days = config.pop("min_duration", None)
        if days:
            filters.append(min_duration(days))

        try:
            return cls(filters=filters, **config)
        except TypeError as err:
            raise GridError(f"Malformed grid definition for scenario {scenario}: {err}") from err
