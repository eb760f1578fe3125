# sim_cache.py
import logging
import os
import pickle
import tempfile

import pandas as pd

from BSTS_simstudy.sim_impact.causal_impact_base import EffectEstimate, TrialFailure
from BSTS_simstudy.synthetic_ts import SimulationParameters

logger = logging.getLogger(__name__)

READ_ERRORS = (OSError, EOFError, pickle.UnpicklingError, AttributeError, ImportError, ValueError, TypeError)


class CacheCorruption(Exception):
    pass


class SimCache:
    """
    Storage of the trial results keyed by SimulationParameters. Values are EffectEstimate or TrialFailure.

    Subclasses implement _load, _store, _contains and keys.
    """

    keep_series = True

    def get(self, key):
        """Stored result or None. Unreadable entries are reported and treated as missing."""
        if not self._contains(key):
            return None
        try:
            return self._load(key)
        except CacheCorruption as err:
            logger.warning("Discarding unreadable cache entry for %s: %s", key, err)
            return None

    def put(self, key, value):
        if not isinstance(key, SimulationParameters):
            raise TypeError(f"Cache keys must be SimulationParameters, got {type(key).__name__}")
        if not isinstance(value, (EffectEstimate, TrialFailure)):
            raise TypeError(f"Cache values must be EffectEstimate or TrialFailure, got {type(value).__name__}")
        if isinstance(value, EffectEstimate) and not self.keep_series:
            value = value.summary()
        self._store(key, value)

    def has(self, key):
        return self.get(key) is not None

    def items(self):
        for key in self.keys():
            value = self.get(key)
            if value is not None:
                yield key, value

    def __contains__(self, key):
        return self.has(key)

    def __len__(self):
        return len(list(self.keys()))


class MemoryCache(SimCache):

    def __init__(self, keep_series=True):
        self.keep_series = keep_series
        self._data = {}

    def _contains(self, key):
        return key in self._data

    def _load(self, key):
        return self._data[key]

    def _store(self, key, value):
        self._data[key] = value

    def keys(self):
        return list(self._data.keys())


class PickleCache(SimCache):
    """
    One pickle file per trial in a directory. Entries are written atomically, so an interrupted sweep leaves
    only complete files behind and can be resumed. Each file holds two pickles, the key then the value, so that
    listing the keys does not load the stored series.

    Args:
        directory (str): cache folder, created if needed.
        keep_series (bool, optional): store the per time step series. Defaults to False (summaries only).
    """

    suffix = ".pkl"

    def __init__(self, directory, keep_series=False):
        self.directory = directory
        self.keep_series = keep_series
        os.makedirs(directory, exist_ok=True)

    def path(self, key):
        return os.path.join(self.directory, key.key + self.suffix)

    def _contains(self, key):
        return os.path.exists(self.path(key))

    @staticmethod
    def _read(path, with_value=True):
        """(key, value) stored in the file, value is None when with_value is False."""
        try:
            with open(path, "rb") as file:
                stored_key = pickle.load(file)
                value = pickle.load(file) if with_value else None
        except READ_ERRORS as err:
            raise CacheCorruption(f"{path}: {err}") from err

        if not isinstance(stored_key, SimulationParameters):
            raise CacheCorruption(f"{path} does not start with a trial key")
        if with_value and not isinstance(value, (EffectEstimate, TrialFailure)):
            raise CacheCorruption(f"{path} does not hold a trial result")
        return stored_key, value

    def _load(self, key):
        path = self.path(key)
        stored_key, value = self._read(path)
        if stored_key != key:
            raise CacheCorruption(f"{path} does not hold a result for {key}")
        return value

    def _store(self, key, value):
        fd, tmp_path = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as file:
                pickle.dump(key, file, protocol=pickle.HIGHEST_PROTOCOL)
                pickle.dump(value, file, protocol=pickle.HIGHEST_PROTOCOL)
            os.replace(tmp_path, self.path(key))
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    def _paths(self):
        return [os.path.join(self.directory, name) for name in sorted(os.listdir(self.directory))
                if name.endswith(self.suffix)]

    def keys(self):
        """Keys of the readable entries. Only the key at the head of each file is unpickled."""
        res = []
        for path in self._paths():
            try:
                stored_key, _ = self._read(path, with_value=False)
            except CacheCorruption as err:
                logger.warning("Skipping unreadable cache file %s: %s", path, err)
                continue
            res.append(stored_key)
        return res

    def items(self):
        """(key, value) of the readable entries, each file is read once."""
        for path in self._paths():
            try:
                item = self._read(path)
            except CacheCorruption as err:
                logger.warning("Skipping unreadable cache file %s: %s", path, err)
                continue
            yield item


def results_frame(results):
    """
    One row per trial: the parameters and the scalar estimates (or the failure reason).

    Args:
        results: SimCache, mapping or iterable of (SimulationParameters, result) pairs.
    """
    if hasattr(results, "items"):
        results = results.items()

    rows = []
    for params, value in results:
        row = {"effect_size": params.effect_size,
               "campaign_duration": params.campaign_duration,
               "structural_change_sd": params.structural_change_sd,
               "simulation_id": params.simulation_id}
        if isinstance(value, EffectEstimate):
            row.update(value.to_dict())
            row["failed"] = False
        else:
            row["failed"] = True
            row["failure_reason"] = getattr(value, "reason", None)
        rows.append(row)

    return pd.DataFrame(rows)


def export_summary(results, path):
    """Write the scalar results to a csv file, small enough to ship with the report."""
    df = results_frame(results)
    df.to_csv(path, index=False)
    return df
