# estimators.py
from BSTS_simstudy.utilities import load_config

BACKENDS = ("BSTS", "MLE")


def _backend_class(backend):
    # tensorflow is only imported when the BSTS backend is used
    if backend == "BSTS":
        from BSTS_simstudy.sim_impact.causal_impact_bsts import CausalImpactBSTS
        return CausalImpactBSTS
    if backend == "MLE":
        from BSTS_simstudy.sim_impact.causal_impact_mle import CausalImpactMLE
        return CausalImpactMLE
    raise ValueError(f"Backend {backend} not recognized, available models are {list(BACKENDS)}")


class Estimator:
    """
    Callable turning a SyntheticSeries into an EffectEstimate, fitted on the pre-period [1, 365] and evaluated
    on the post-period [366, 365+d].
    """

    def __init__(self, backend="BSTS", model_kwargs=None, alpha=0.05):
        self.cls = _backend_class(backend)
        self.backend = backend
        self.model_kwargs = load_config("model_config.yaml", section=backend, **(model_kwargs or {}))
        self.alpha = alpha

    def __call__(self, series, keep_series=False):
        params = series.params
        ci = self.cls(series.model_data, params.pre_period, params.post_period, alpha=self.alpha)
        return ci.run(model_kwargs=dict(self.model_kwargs), keep_series=keep_series)

    def __repr__(self):
        return f"Estimator(backend={self.backend!r}, model_kwargs={self.model_kwargs!r})"


def make_estimator(backend="BSTS", model_kwargs=None, alpha=0.05):
    return Estimator(backend=backend, model_kwargs=model_kwargs, alpha=alpha)
