# causal_impact_bsts.py
import logging

import numpy as np
import tensorflow as tf
import tensorflow_probability as tfp
from causalimpact import CausalImpact

from BSTS_simstudy.sim_impact.causal_impact_base import CausalImpactBase, EstimationFailure, effect_from_summary
from BSTS_simstudy.utilities import load_config

logger = logging.getLogger(__name__)

# keys of model_config.yaml consumed here rather than by tfcausalimpact
LOCAL_KEYS = ("dynamic_regression",)


class BSTSMixin:
    """
    Bayesian structural time series fitted by tfcausalimpact.

    With dynamic_regression the counterfactual model is a local level plus a regression on the predictors whose
    coefficients follow random walks, as in the data generating process of the simulation study.
    """

    backend_errors = CausalImpactBase.backend_errors + (tf.errors.OpError,)

    def fit(self, model_kwargs=None):

        self.model_kwargs = model_kwargs or load_config("model_config.yaml", section="BSTS")

        ci_kwargs = {k: v for k, v in self.model_kwargs.items() if k not in LOCAL_KEYS}
        model = None
        if self.model_kwargs.get("dynamic_regression", False):
            model = self.build_dynamic_model(ci_kwargs.get("prior_level_sd", 0.01))
            # a custom model is built on the raw data, tfcausalimpact must not rescale it
            ci_kwargs["standardize"] = False

        data = self.data.astype(np.float32)
        self.model = CausalImpact(data, list(self.pre_period), list(self.post_period),
                                  model=model, model_args=ci_kwargs, alpha=self.alpha)
        self.model_results = self.model.summary_data

        if self.model_results is None:
            raise EstimationFailure("tfcausalimpact returned no summary")

    def build_dynamic_model(self, prior_level_sd):
        """Local level + dynamic linear regression, level scale prior centred on prior_level_sd * sd(y)."""

        tfd = tfp.distributions
        y_pre = self.pre_data.iloc[:, 0].astype(np.float32)
        design_matrix = self.data.iloc[:, 1:].to_numpy(dtype=np.float32)

        sd_y = float(np.std(y_pre))
        if not sd_y > 0:
            raise EstimationFailure("Constant pre-period response, the level prior is undefined")

        level = tfp.sts.LocalLevel(
            observed_time_series=y_pre,
            level_scale_prior=tfd.LogNormal(loc=np.float32(np.log(prior_level_sd * sd_y)), scale=np.float32(0.01)),
            name="level")
        regression = tfp.sts.DynamicLinearRegression(design_matrix=design_matrix, name="dynamic_regression")

        return tfp.sts.Sum([level, regression], observed_time_series=y_pre)

    def predict(self):

        if self.model is None:
            raise ValueError("Model not yet fitted. Run fit() first")

        inferences = self.model.inferences
        post = inferences.loc[self.post_period[0]:self.post_period[1]]
        self.pred_pre = inferences.loc[self.pre_period[0]:self.pre_period[1], "complete_preds_means"].to_numpy()
        self.pred_mean = post["complete_preds_means"].to_numpy()
        self.pred_ci = post[["complete_preds_lower", "complete_preds_upper"]].to_numpy()

    def get_estimate(self, keep_series=False):

        if self.model is None:
            raise ValueError("Model has not been fitted yet, call run()")

        return effect_from_summary(self.model.summary_data,
                                   inferences=self.model.inferences,
                                   response=self.data.iloc[:, 0],
                                   p_value=getattr(self.model, "p_value", None),
                                   keep_series=keep_series)


class CausalImpactBSTS(BSTSMixin, CausalImpactBase):
    def __init__(self, data, pre_period, post_period, alpha=0.05):
        CausalImpactBase.__init__(self, data, pre_period, post_period, alpha=alpha)
