from BSTS_simstudy.sim_impact.causal_impact_base import EffectEstimate, EstimationFailure, TrialFailure
from BSTS_simstudy.sim_impact.estimators import Estimator, make_estimator
from BSTS_simstudy.sim_impact.sim_aggregate import (AggregateStatistic, aggregate, coverage, covers_truth,
                                                    pointwise_error, rejection_rates, rejects_null,
                                                    summarize_estimates, to_frame)
from BSTS_simstudy.sim_impact.sim_cache import CacheCorruption, MemoryCache, PickleCache, SimCache, export_summary
from BSTS_simstudy.sim_impact.sim_grid import GridError, SimGrid, cross_section, min_duration, where
from BSTS_simstudy.sim_impact.sim_runner import SimRunner, SweepResult, run_sweep
