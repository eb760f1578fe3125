# sim_runner.py
import logging
import os
from collections import Counter
from collections.abc import Mapping
from concurrent.futures import ProcessPoolExecutor, as_completed

from tqdm import tqdm

from BSTS_simstudy.sim_impact.causal_impact_base import EffectEstimate, TrialFailure
from BSTS_simstudy.sim_impact.estimators import make_estimator
from BSTS_simstudy.sim_impact.sim_cache import MemoryCache
from BSTS_simstudy.sim_impact.sim_grid import GridError, SimGrid
from BSTS_simstudy.synthetic_ts import SimulationParameters, generate
from BSTS_simstudy.utilities import load_config

logger = logging.getLogger(__name__)


def run_trial(params, estimator, base_seed=0, keep_series=False):
    """
    Generate the series of one trial and estimate the effect. Never raises for a failing estimation: the error
    is returned as a TrialFailure.
    """
    series = generate(params, base_seed=base_seed)
    try:
        return estimator(series, keep_series=keep_series)
    except Exception as err:  # one trial must not stop the sweep
        logger.warning("Trial %s failed: %s: %s", params.key, type(err).__name__, err)
        return TrialFailure.from_exception(err)


def _run_trial_task(args):
    params = args[0]
    return params, run_trial(*args)


class SweepResult(Mapping):
    """
    Successful estimates of a sweep, keyed by SimulationParameters. Failed trials are listed in `failures`.
    """

    def __init__(self, estimates, failures, n_requested, n_computed, n_cached):
        self._estimates = dict(estimates)
        self.failures = dict(failures)
        self.n_requested = n_requested
        self.n_computed = n_computed
        self.n_cached = n_cached

    def __getitem__(self, key):
        return self._estimates[key]

    def __iter__(self):
        return iter(self._estimates)

    def __len__(self):
        return len(self._estimates)

    @property
    def n_succeeded(self):
        return len(self._estimates)

    @property
    def n_failed(self):
        return len(self.failures)

    def failures_by(self, group_by=("effect_size", "campaign_duration")):
        """Count of failed trials per group."""
        group_by = [group_by] if isinstance(group_by, str) else list(group_by)
        counts = Counter()
        for params in self.failures:
            key = tuple(getattr(params, g) for g in group_by)
            counts[key[0] if len(key) == 1 else key] += 1
        return dict(counts)

    def report(self, group_by=("effect_size", "campaign_duration")):
        """End of run summary: counts, failure reasons and failed trials per group."""
        lines = [f"Trials requested: {self.n_requested} ({self.n_cached} from cache, {self.n_computed} computed)",
                 f"Trials succeeded: {self.n_succeeded}",
                 f"Trials failed: {self.n_failed}"]
        reasons = Counter(f"{f.error_type}: {f.reason}" for f in self.failures.values())
        for reason, count in reasons.most_common():
            lines.append(f"  {count} x {reason}")

        if self.failures:
            group_by = [group_by] if isinstance(group_by, str) else list(group_by)
            lines.append("Failed trials per group:")
            for key, count in sorted(self.failures_by(group_by).items()):
                key = key if isinstance(key, tuple) else (key,)
                group = ", ".join(f"{g}={v}" for g, v in zip(group_by, key))
                lines.append(f"  {group}: {count}")
        return "\n".join(lines)

    def __repr__(self):
        return f"SweepResult(succeeded={self.n_succeeded}, failed={self.n_failed}, requested={self.n_requested})"


class SimRunner:
    """
    Run the estimator on every trial of a grid, memoizing the results in a cache.

    Args:
        estimator (callable, optional): (SyntheticSeries, keep_series) -> EffectEstimate.
                                        Defaults to the backend named in sim_config.yaml.
        cache (SimCache, optional): result store. Defaults to an in-memory cache.
        keep_series (bool, optional): ask the estimator for the per time step results. Defaults to False.
        base_seed (int, optional): mixed into every trial seed. Defaults to the value of sim_config.yaml.
        retry_failed (bool, optional): recompute trials stored as failed. Defaults to False.
        n_jobs (int, optional): worker processes, -1 for all cores. Defaults to 1.
        progress (bool, optional): show a progress bar. Defaults to True.
    """

    def __init__(self, estimator=None, cache=None, keep_series=False, base_seed=None,
                 retry_failed=False, n_jobs=1, progress=True):

        config = load_config("sim_config.yaml")
        self.estimator = estimator if estimator is not None else make_estimator(config.get("backend", "BSTS"))
        self.cache = cache if cache is not None else MemoryCache()
        if keep_series and not self.cache.keep_series:
            # such a cache would only return summaries, every trial would be recomputed on each run
            raise ValueError(f"keep_series=True needs a cache storing the series, "
                             f"{type(self.cache).__name__} was created with keep_series=False")
        self.keep_series = keep_series
        self.base_seed = config.get("base_seed", 0) if base_seed is None else base_seed
        self.retry_failed = retry_failed
        self.n_jobs = (os.cpu_count() or 1) if n_jobs == -1 else max(1, int(n_jobs))
        self.progress = progress

    def _params_list(self, grid):
        if isinstance(grid, SimGrid):
            return grid.params()

        params_list = []
        seen = set()
        for params in grid:
            if not isinstance(params, SimulationParameters):
                raise GridError(f"Grid entries must be SimulationParameters, got {type(params).__name__}")
            if params not in seen:
                seen.add(params)
                params_list.append(params)
        return params_list

    def _cached(self, params):
        value = self.cache.get(params)
        if value is None:
            return None
        if isinstance(value, TrialFailure) and self.retry_failed:
            return None
        if isinstance(value, EffectEstimate) and self.keep_series and not value.has_series:
            return None
        return value

    def run_sweep(self, grid):
        """
        Results of all trials of the grid, computing the ones missing from the cache.

        Args:
            grid (SimGrid or iterable of SimulationParameters): trials to run.

        Returns:
            SweepResult
        """
        params_list = self._params_list(grid)

        results = {}
        todo = []
        for params in params_list:
            value = self._cached(params)
            if value is None:
                todo.append(params)
            else:
                results[params] = value
        n_cached = len(results)

        logger.info("%d trials requested, %d found in cache, %d to compute", len(params_list), n_cached, len(todo))

        for params, value, cacheable in self._compute(todo):
            if cacheable:
                self.cache.put(params, value)
            results[params] = value

        estimates = {p: results[p] for p in params_list if isinstance(results[p], EffectEstimate)}
        failures = {p: results[p] for p in params_list if isinstance(results[p], TrialFailure)}

        res = SweepResult(estimates, failures, n_requested=len(params_list), n_computed=len(todo), n_cached=n_cached)
        logger.info(res.report())
        return res

    def _compute(self, todo):
        """
        Yield (params, result, cacheable) as trials complete. A trial lost with its worker process is returned
        as a TrialFailure that is not cached, so that the next run computes it again.
        """
        if not todo:
            return

        tasks = [(params, self.estimator, self.base_seed, self.keep_series) for params in todo]
        with tqdm(total=len(tasks), desc="Simulations", disable=not self.progress) as bar:

            if self.n_jobs <= 1 or len(tasks) == 1:
                for task in tasks:
                    yield _run_trial_task(task) + (True,)
                    bar.update(1)
                return

            # workers only compute, the cache is written by this process
            with ProcessPoolExecutor(max_workers=min(self.n_jobs, len(tasks))) as ex:
                futures = {ex.submit(_run_trial_task, task): task[0] for task in tasks}
                for future in as_completed(futures):
                    params = futures[future]
                    try:
                        _, value = future.result()
                    except Exception as err:  # e.g. BrokenProcessPool when a worker dies
                        logger.warning("Trial %s lost: %s: %s", params.key, type(err).__name__, err)
                        failure = TrialFailure(reason=str(err) or repr(err), error_type=type(err).__name__)
                        yield params, failure, False
                    else:
                        yield params, value, True
                    bar.update(1)


def run_sweep(grid, estimator=None, cache=None, **runner_kwargs):
    """Shortcut for SimRunner(estimator, cache, **runner_kwargs).run_sweep(grid)."""
    return SimRunner(estimator=estimator, cache=cache, **runner_kwargs).run_sweep(grid)
