"""BSTS simulation study.

Reproduction of the simulation study of Brodersen et al. (2015), "Inferring causal impact using Bayesian
structural time-series models": synthetic series with time varying regression coefficients, causal impact
estimation on each trial, and rejection rate / coverage statistics over repeated trials.
"""
