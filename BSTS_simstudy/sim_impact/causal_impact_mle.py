# causal_impact_mle.py
import logging
import warnings

import numpy as np
from scipy.sparse import SparseEfficiencyWarning
from statsmodels.tools.sm_exceptions import ConvergenceWarning
from statsmodels.tsa.statespace.structural import UnobservedComponents

from BSTS_simstudy.sim_impact.causal_impact_base import CausalImpactBase
from BSTS_simstudy.utilities import load_config

logger = logging.getLogger(__name__)


class MLEMixin:
    """
    Maximum likelihood structural time series (statsmodels). The regression coefficients are static, which
    makes it a fast but misspecified stand-in for the dynamic regression BSTS model.
    """

    def fit(self, model_kwargs=None):

        self.model_kwargs = model_kwargs or load_config("model_config.yaml", section="MLE")

        if self.model_kwargs.get("standardized_controls", False):
            self.data = self._standardize_controls(self.data, self.pre_period)
            self.pre_data = self.data.loc[self.pre_period[0]:self.pre_period[1]]
            self.post_data = self.data.loc[self.post_period[0]:self.post_period[1]]

        self.mle_kwargs = {k: v for k, v in self.model_kwargs.items() if k != "standardized_controls"}

        target = self.pre_data.iloc[:, 0].to_numpy(dtype=float)
        exog = self.pre_data.iloc[:, 1:].to_numpy(dtype=float)

        self.model = UnobservedComponents(endog=target, exog=exog, **self.mle_kwargs)

        with warnings.catch_warnings():
            warnings.simplefilter("ignore", SparseEfficiencyWarning)  # silence sparse matrix warnings
            warnings.simplefilter("ignore", ConvergenceWarning)
            self.model_results = self.model.fit(disp=False)

        if not self.model_results.mle_retvals.get("converged", True):
            logger.warning("Model did not converge. Data length = %d", len(self.pre_data))

    def predict(self):

        if self.model_results is None:
            raise ValueError("Model not yet fitted. Run fit() first")

        # point prediction for pre period
        self.pred_pre = np.asarray(self.model_results.get_prediction().predicted_mean)

        # counterfactual forecast for post period
        exog_post = self.post_data.iloc[:, 1:].to_numpy(dtype=float)
        forecast = self.model_results.get_forecast(steps=len(exog_post), exog=exog_post)
        self.pred_mean = np.asarray(forecast.predicted_mean)
        self.pred_ci = np.asarray(forecast.conf_int(alpha=self.alpha))

        self.model_performance = {
            "aic": self.model_results.aic,
            "bic": self.model_results.bic
        }

    def _standardize_controls(self, data, pre_period):

        df_pre = data.loc[pre_period[0]:pre_period[1]]

        self.control_means = df_pre.iloc[:, 1:].mean()
        self.control_stds = df_pre.iloc[:, 1:].std(ddof=0).replace(0, 1)

        data = data.copy()
        data.iloc[:, 1:] = (data.iloc[:, 1:] - self.control_means) / self.control_stds

        return data


class CausalImpactMLE(CausalImpactBase, MLEMixin):
    def __init__(self, data, pre_period, post_period, alpha=0.05):
        CausalImpactBase.__init__(self, data, pre_period, post_period, alpha=alpha)
