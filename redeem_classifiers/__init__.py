"""
Semi-supervised rescoring of peptide-spectrum matches (PSMs) with
target-decoy competition q-values.

Example:
    >>> from redeem_classifiers import rescore, RunnerConfig
    >>> result = rescore(table, RunnerConfig(classifier="XGBoost"))
    >>> result.summary.converged
"""

from ._config import ErrorEstimationConfig, RunnerConfig
from .exceptions import (
    DegenerateFeatureError,
    InsufficientDataError,
    NoDecoysError,
    NonConvergenceWarning,
    RescoreError,
)
from .scoring.convergence import RescoreState
from .scoring.ensemble import FoldEnsemble
from .scoring.runner import RescoreSummary, Result, rescore
from .stats import tdc_qvalues

__all__ = [
    "DegenerateFeatureError",
    "ErrorEstimationConfig",
    "FoldEnsemble",
    "InsufficientDataError",
    "NoDecoysError",
    "NonConvergenceWarning",
    "RescoreError",
    "RescoreState",
    "RescoreSummary",
    "Result",
    "RunnerConfig",
    "rescore",
    "tdc_qvalues",
]
