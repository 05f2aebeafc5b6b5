"""
This module defines configuration classes for the semi-supervised rescoring
and error estimation performed by redeem-classifiers.

The configurations are implemented using Python's `dataclass` to provide a
structured and type-safe way to manage parameters. They are consumed by the
runner, the semi-supervised learner, the learners and the q-value calibration.

Classes:
    - ErrorEstimationConfig: Configuration for target-decoy q-value estimation.
    - RunnerConfig: Configuration for input columns, classifier setup, learning
      parameters, convergence and execution.

Usage:
    These configuration classes are typically instantiated with default values
    and overridden by keyword arguments from the calling application.
"""

import copy
from dataclasses import dataclass, field
from typing import List, Literal, Optional

SUPPORTED_CLASSIFIERS = ("LDA", "SVM", "XGBoost", "HistGradientBoosting")
SUPPORTED_COMBINATIONS = ("mean", "median")


def default_xgb_params():
    return {
        "eta": 0.3,
        "gamma": 0,
        "max_depth": 6,
        "min_child_weight": 1,
        "subsample": 1,
        "colsample_bytree": 1,
        "colsample_bylevel": 1,
        "colsample_bynode": 1,
        "lambda": 1,
        "alpha": 0,
        "scale_pos_weight": 1,
        "verbosity": 0,
        "objective": "binary:logitraw",
        "base_score": 0.5,
        "nthread": 1,
        "eval_metric": "auc",
        "tree_method": "exact",
    }


@dataclass
class ErrorEstimationConfig:
    """
    Configuration for target-decoy competition q-value estimation.

    Attributes:
        competition_factor (float): Multiplier applied to the decoy count in the
            running FDR estimate. 1.0 when targets and decoys compete one-to-one,
            2.0 when the decoy count must be doubled.
        reporting_fdr (float): q-value threshold at which targets are reported
            as accepted and at which convergence is monitored.
    """

    competition_factor: float = 1.0
    reporting_fdr: float = 0.01

    def __post_init__(self):
        if self.competition_factor not in (1.0, 2.0):
            raise ValueError(
                f"competition_factor must be 1.0 or 2.0, got {self.competition_factor}."
            )
        if not 0 < self.reporting_fdr < 1:
            raise ValueError(
                f"reporting_fdr must be within (0, 1), got {self.reporting_fdr}."
            )

    def __str__(self):
        return (
            f"ErrorEstimationConfig(\ncompetition_factor={self.competition_factor}\n"
            f"reporting_fdr={self.reporting_fdr})"
        )

    def __repr__(self):
        return (
            f"ErrorEstimationConfig(competition_factor={self.competition_factor}, "
            f"reporting_fdr={self.reporting_fdr})"
        )


@dataclass
class RunnerConfig:
    """
    Configuration for input columns, classifier setup, learning parameters,
    convergence monitoring and execution.

    Attributes:
        id_column (str): Column holding the unique PSM identifier.
        group_column (str): Column holding the spectrum group key. If the column
            is absent from the input, every PSM forms its own group.
        decoy_column (str): Column holding the boolean decoy flag.
        feature_columns (list, optional): Ordered feature columns. None selects
            every numeric column not otherwise named.

        classifier (str): Learner used for semi-supervised learning
            ('LDA', 'SVM', 'XGBoost' or 'HistGradientBoosting').
        xgb_params (dict): Parameters handed to `xgboost.train`.
        xgb_num_boost_round (int): Number of boosting rounds for XGBoost.
        hgb_params (dict): Parameters handed to HistGradientBoostingClassifier.
        svm_c (float): Regularisation strength of the linear SVM.
        svm_max_iter (int): Maximum number of iterations of the linear SVM.

        num_folds (int): Number of cross-validation folds (K >= 2).

        ss_main_score (str): Column used for the initial ranking, or 'auto' to
            choose the best single feature.
        ss_initial_fraction (float): Fraction of targets selected as initial
            positives by the initial ranking.
        ss_initial_min_count (int): Minimum number of initial positives.
        ss_initial_fdr (float, optional): If set, targets passing this q-value
            threshold under the initial ranking are also initial positives.
        ss_iteration_fdr (float): q-value threshold for selecting positives in
            every subsequent round.
        ss_num_iter (int): Maximum number of semi-supervised rounds.
        ss_patience (int): Number of consecutive rounds with a decreasing number
            of accepted targets tolerated before stopping.
        ss_top_ranked_only (bool): Only the best PSM of each spectrum group is
            eligible as a positive training example.
        ss_scale_features (bool): Standardise features before learning.
        ss_use_dynamic_main_score (bool): Automatically determined during `__post_init__`.
        normalize_fold_scores (bool): Standardise the merged cross-validated
            scores by the decoy score distribution of all folds.
        ensemble_combination (str): How fold models are combined for new PSMs
            ('mean' or 'median').

        error_estimation_config (ErrorEstimationConfig): q-value settings.

        threads (int): Number of fold worker threads.
        seed (int): Random seed for fold assignment and stochastic learners.
        max_runtime (float, optional): Wall-clock budget in seconds, checked at
            round boundaries.
    """

    # Input columns
    id_column: str = "psm_id"
    group_column: str = "spectrum_id"
    decoy_column: str = "is_decoy"
    feature_columns: Optional[List[str]] = None

    # Scoring / classifier options
    classifier: Literal["LDA", "SVM", "XGBoost", "HistGradientBoosting"] = "LDA"
    xgb_params: dict = field(default_factory=default_xgb_params)
    xgb_num_boost_round: int = 100
    hgb_params: dict = field(default_factory=dict)
    svm_c: float = 1.0
    svm_max_iter: int = 1000

    # Cross-validation settings
    num_folds: int = 3

    # Semi-supervised settings
    ss_main_score: str = "auto"
    ss_initial_fraction: float = 0.01
    ss_initial_min_count: int = 20
    ss_initial_fdr: Optional[float] = None
    ss_iteration_fdr: float = 0.01
    ss_num_iter: int = 10
    ss_patience: int = 2
    ss_top_ranked_only: bool = True
    ss_scale_features: bool = False
    ss_use_dynamic_main_score: bool = field(init=False)
    normalize_fold_scores: bool = True
    ensemble_combination: Literal["mean", "median"] = "mean"

    # Statistics
    error_estimation_config: ErrorEstimationConfig = field(
        default_factory=ErrorEstimationConfig
    )

    # Execution
    threads: int = 1
    seed: int = 42
    max_runtime: Optional[float] = None

    def __post_init__(self):
        if self.classifier not in SUPPORTED_CLASSIFIERS:
            raise ValueError(
                f"Classifier {self.classifier} not supported. "
                f"Choose one of {', '.join(SUPPORTED_CLASSIFIERS)}."
            )
        if self.ensemble_combination not in SUPPORTED_COMBINATIONS:
            raise ValueError(
                f"Combination rule {self.ensemble_combination} not supported. "
                f"Choose one of {', '.join(SUPPORTED_COMBINATIONS)}."
            )
        if self.num_folds < 2:
            raise ValueError(f"num_folds must be at least 2, got {self.num_folds}.")
        if not 0 < self.ss_initial_fraction <= 1:
            raise ValueError("ss_initial_fraction must be within (0, 1].")
        if self.ss_initial_min_count < 1:
            raise ValueError("ss_initial_min_count must be at least 1.")
        for name in ("ss_initial_fdr", "ss_iteration_fdr"):
            value = getattr(self, name)
            if value is not None and not 0 < value < 1:
                raise ValueError(f"{name} must be within (0, 1), got {value}.")
        if self.ss_num_iter < 1:
            raise ValueError("ss_num_iter must be at least 1.")
        if self.ss_patience < 0:
            raise ValueError("ss_patience must be >= 0.")
        if self.threads < 1:
            raise ValueError("threads must be at least 1.")

        # Check for auto main score selection
        if self.ss_main_score == "auto":
            self.ss_use_dynamic_main_score = True
        else:
            self.ss_use_dynamic_main_score = False

    @property
    def max_rounds(self):
        return self.ss_num_iter

    def copy(self):
        """
        Return a deep copy of the config object.
        """
        return copy.deepcopy(self)

    def __str__(self):
        parts = [
            "RunnerConfig(",
            f"  id_column='{self.id_column}'",
            f"  group_column='{self.group_column}'",
            f"  decoy_column='{self.decoy_column}'",
            f"  feature_columns={self.feature_columns}",
            f"  classifier='{self.classifier}'",
        ]

        # Conditionally add learner-specific parameters
        if self.classifier == "XGBoost":
            parts.extend(
                [
                    f"  xgb_params={self.xgb_params}",
                    f"  xgb_num_boost_round={self.xgb_num_boost_round}",
                ]
            )
        elif self.classifier == "HistGradientBoosting":
            parts.append(f"  hgb_params={self.hgb_params}")
        elif self.classifier == "SVM":
            parts.extend(
                [f"  svm_c={self.svm_c}", f"  svm_max_iter={self.svm_max_iter}"]
            )

        parts.extend(
            [
                f"  num_folds={self.num_folds}",
                f"  ss_main_score='{self.ss_main_score}'",
                f"  ss_initial_fraction={self.ss_initial_fraction}",
                f"  ss_initial_min_count={self.ss_initial_min_count}",
                f"  ss_initial_fdr={self.ss_initial_fdr}",
                f"  ss_iteration_fdr={self.ss_iteration_fdr}",
                f"  ss_num_iter={self.ss_num_iter}",
                f"  ss_patience={self.ss_patience}",
                f"  ss_top_ranked_only={self.ss_top_ranked_only}",
                f"  ss_scale_features={self.ss_scale_features}",
                f"  ss_use_dynamic_main_score={self.ss_use_dynamic_main_score}",
                f"  normalize_fold_scores={self.normalize_fold_scores}",
                f"  ensemble_combination='{self.ensemble_combination}'",
                f"  error_estimation_config={self.error_estimation_config!r}",
                f"  threads={self.threads}",
                f"  seed={self.seed}",
                f"  max_runtime={self.max_runtime}",
                ")",
            ]
        )

        return "\n".join(parts)

    def __repr__(self):
        return (
            f"RunnerConfig(classifier='{self.classifier}', num_folds={self.num_folds}, "
            f"ss_main_score='{self.ss_main_score}', ss_iteration_fdr={self.ss_iteration_fdr}, "
            f"ss_num_iter={self.ss_num_iter}, threads={self.threads}, seed={self.seed})"
        )
