"""
This module defines the classifiers (learners) used for semi-supervised
rescoring of peptide-spectrum matches.

Classes:
    - AbstractLearner: Base class for defining a learner interface.
    - LinearLearner: Base class for linear classifiers.
    - LDALearner: Implements a Linear Discriminant Analysis (LDA) learner.
    - SVMLearner: Implements a linear Support Vector Machine (SVM) learner.
    - HistGBCLearner: Implements a HistGradientBoostingClassifier-based learner.
    - XGBLearner: Implements an XGBoost-based learner.

Functions:
    - check_training_data: Rejects training data without discriminative signal.
    - get_learner: Builds the learner named by the configuration.

Each learner provides methods for training and scoring. Training never
mutates the learner it is called on: `learn` returns a new fitted learner
(a model snapshot), so one configured learner can be shared by concurrent
fold workers.
"""

import copy
import inspect
from typing import List

import numpy as np
import pandas as pd
import xgboost as xgb
from loguru import logger
from sklearn.discriminant_analysis import LinearDiscriminantAnalysis
from sklearn.ensemble import HistGradientBoostingClassifier
from sklearn.model_selection import train_test_split
from sklearn.svm import LinearSVC

from ..exceptions import DegenerateFeatureError
from .data_handling import FeatureMatrix


def check_training_data(X, y, feature_names=None):
    """
    Checks that training data can discriminate targets from decoys.

    Args:
        X (np.ndarray): Training feature matrix.
        y (np.ndarray): Training labels (0 decoy, 1 target).
        feature_names (list, optional): Names used in error messages.

    Raises:
        DegenerateFeatureError: If only one label is present or a feature is
            constant across all training rows.
    """
    classes = np.unique(y)
    if len(classes) < 2:
        present = "no" if len(classes) == 0 else ("only target" if classes[0] == 1 else "only decoy")
        raise DegenerateFeatureError(
            f"Training data contains {present} examples, at least one decoy and one target are required."
        )

    constant = np.flatnonzero(np.ptp(X, axis=0) == 0)
    if len(constant):
        if feature_names is None:
            feature_names = [f"f{i}" for i in range(X.shape[1])]
        names = ", ".join(feature_names[i] for i in constant)
        raise DegenerateFeatureError(
            f"Feature(s) {names} are constant across all {X.shape[0]} training rows."
        )


def _as_feature_array(peaks):
    if isinstance(peaks, FeatureMatrix):
        return peaks.get_feature_matrix()
    return np.asarray(peaks, dtype=np.float64)


def _training_data(decoy_peaks, target_peaks):
    assert isinstance(decoy_peaks, FeatureMatrix)
    assert isinstance(target_peaks, FeatureMatrix)

    X0 = decoy_peaks.get_feature_matrix()
    X1 = target_peaks.get_feature_matrix()
    X = np.vstack((X0, X1))
    y = np.zeros((X.shape[0],), dtype=np.int64)
    y[X0.shape[0] :] = 1
    check_training_data(X, y, decoy_peaks.feature_names)
    return X, y


class AbstractLearner(object):
    """
    Abstract base class for defining a learner interface.

    Methods:
        - learn: Train a new model snapshot on decoy and target peaks.
        - score: Score the given peaks using the trained model.
        - get_parameters: Retrieve the trained model.
        - set_parameters: Set the trained model.
    """

    name = None

    def __init__(self):
        self.classifier = None

    def learn(self, decoy_peaks, target_peaks):
        """Train a new model snapshot using decoy and target peaks."""
        raise NotImplementedError()

    def score(self, peaks):
        """Score the given peaks using the trained model."""
        raise NotImplementedError()

    def get_parameters(self):
        """Retrieve the parameters of the trained model."""
        return self.classifier

    def set_parameters(self, classifier):
        """Set the parameters of the model."""
        self.classifier = classifier
        return self

    @property
    def fitted(self):
        return self.classifier is not None

    def _snapshot(self, classifier):
        model = copy.copy(self)
        return model.set_parameters(classifier)

    def _check_fitted(self):
        if not self.fitted:
            raise ValueError("Classifier has not been trained yet.")


class LinearLearner(AbstractLearner):
    """
    Base class for linear classifiers.

    Methods:
        - score: Score the given peaks using the decision function.
        - get_weights: Retrieve feature weights from the model.
    """

    def score(self, peaks):
        """Score the given peaks using the linear model."""
        self._check_fitted()
        X = _as_feature_array(peaks)
        return self.classifier.decision_function(X).astype(np.float64)

    def get_weights(self, features: List[str]) -> pd.DataFrame:
        """
        Return a DataFrame with feature names and their weights.

        Args:
            features (List[str]): List of feature names.

        Returns:
            pd.DataFrame: DataFrame containing feature names and weights.
        """
        self._check_fitted()
        weights = self.classifier.coef_
        assert weights.shape[0] == 1
        assert weights.shape[1] == len(features)
        return pd.DataFrame({"score": features, "weight": weights.flatten()})


class LDALearner(LinearLearner):
    """
    Implements a Linear Discriminant Analysis (LDA) learner.
    """

    name = "LDA"

    def learn(self, decoy_peaks, target_peaks):
        """Train the LDA model using decoy and target peaks."""
        X, y = _training_data(decoy_peaks, target_peaks)
        classifier = LinearDiscriminantAnalysis()
        classifier.fit(X, y)
        return self._snapshot(classifier)


class SVMLearner(LinearLearner):
    """
    Implements a linear Support Vector Classification (SVM) learner.
    """

    name = "SVM"

    def __init__(self, C=1.0, max_iter=1000, random_state=42):
        super().__init__()
        self.C = C
        self.max_iter = max_iter
        self.random_state = random_state

    def learn(self, decoy_peaks, target_peaks):
        """Train the SVM model using decoy and target peaks."""
        X, y = _training_data(decoy_peaks, target_peaks)
        classifier = LinearSVC(
            dual=False,
            C=self.C,
            max_iter=self.max_iter,
            class_weight="balanced",
            random_state=self.random_state,
        )
        classifier.fit(X, y)
        return self._snapshot(classifier)


class HistGBCLearner(AbstractLearner):
    """
    Implements a scikit-learn HistGradientBoostingClassifier-based learner.

    Attributes:
        importance (dict): Feature importance keyed by f{index}.
    """

    name = "HistGradientBoosting"

    def __init__(self, hgb_params=None, random_state=42):
        super().__init__()
        self.importance = None
        self.hgb_params = dict(hgb_params or {})
        self.random_state = random_state

    def learn(self, decoy_peaks, target_peaks):
        """Train the HistGradientBoosting model using decoy and target peaks."""
        X, y = _training_data(decoy_peaks, target_peaks)

        # Configure classifier with user params or defaults
        clf_params = dict(self.hgb_params)
        clf_params.setdefault("random_state", self.random_state)
        clf_params.setdefault("max_iter", 100)
        clf_params.setdefault("early_stopping", "auto")
        # leaves must be able to hold only the positives of a small initial selection
        clf_params.setdefault(
            "min_samples_leaf", min(20, max(1, len(target_peaks) // 2))
        )

        # Filter out any params not accepted by HistGradientBoostingClassifier
        valid_params = inspect.signature(
            HistGradientBoostingClassifier.__init__
        ).parameters
        dropped = sorted(k for k in clf_params if k not in valid_params)
        if dropped:
            logger.warning(f"Ignoring unknown HistGradientBoosting parameters: {dropped}")
        clf_params = {k: v for k, v in clf_params.items() if k in valid_params}

        classifier = HistGradientBoostingClassifier(**clf_params)
        classifier.fit(X, y)
        return self._snapshot(classifier)

    def score(self, peaks):
        """Score the given peaks using the HistGradientBoosting model."""
        self._check_fitted()
        X = _as_feature_array(peaks)
        return self.classifier.decision_function(X).astype(np.float64)

    def set_parameters(self, classifier):
        """Set the parameters of the model."""
        self.classifier = classifier
        if hasattr(classifier, "n_features_in_"):
            # impurity-based importances are not exposed, use split gain per feature
            self.importance = _hgb_split_gain(classifier)
        else:
            self.importance = {}
        return self


def _hgb_split_gain(classifier):
    """Sum of split gains per feature over all trees of a fitted model."""
    gains = np.zeros(classifier.n_features_in_, dtype=np.float64)
    for predictors in classifier._predictors:
        for predictor in predictors:
            nodes = predictor.nodes
            splits = nodes[~nodes["is_leaf"].astype(bool)]
            np.add.at(gains, splits["feature_idx"], splits["gain"])
    return {f"f{i}": float(v) for i, v in enumerate(gains)}


class XGBLearner(AbstractLearner):
    """
    Implements an XGBoost-based learner for scoring.

    Attributes:
        xgb_params (dict): Parameters handed to `xgboost.train`.
        importance (dict): Gain importance keyed by f{index}.
    """

    name = "XGBoost"

    def __init__(self, xgb_params, num_boost_round=100, threads=1, random_state=42):
        super().__init__()
        self.importance = None
        self.xgb_hyperparams = {
            "num_boost_round": num_boost_round,
            "early_stopping_rounds": 10,
            "test_size": 0.33,
        }
        self.threads = threads
        self.random_state = random_state
        self.xgb_params = dict(xgb_params)
        self.xgb_params["nthread"] = self.threads
        self.xgb_params["seed"] = self.random_state

    def learn(self, decoy_peaks, target_peaks):
        """Train the XGBoost model using decoy and target peaks."""
        X, y = _training_data(decoy_peaks, target_peaks)

        # prepare training and validation data
        stratify = y if np.bincount(y).min() >= 2 else None
        X_train, X_val, y_train, y_val = train_test_split(
            X,
            y,
            test_size=self.xgb_hyperparams["test_size"],
            random_state=self.random_state,
            stratify=stratify,
        )
        dtrain = xgb.DMatrix(X_train, label=y_train)
        dval = xgb.DMatrix(X_val, label=y_val)

        # learn model
        classifier = xgb.train(
            params=self.xgb_params,
            dtrain=dtrain,
            num_boost_round=self.xgb_hyperparams["num_boost_round"],
            evals=[(dval, "validation")],
            early_stopping_rounds=self.xgb_hyperparams["early_stopping_rounds"],
            verbose_eval=False,
        )
        return self._snapshot(classifier)

    def score(self, peaks):
        """Score the given peaks using the XGBoost model."""
        self._check_fitted()
        X = _as_feature_array(peaks)
        dtest = xgb.DMatrix(X)
        result = self.classifier.predict(dtest)
        return result.astype(np.float64)

    def set_parameters(self, classifier):
        """Set the parameters of the XGBoost model."""
        self.classifier = classifier
        self.importance = classifier.get_score(importance_type="gain")
        return self


def get_learner(config):
    """
    Builds the learner named by `config.classifier`.

    Args:
        config (RunnerConfig): The runner configuration.

    Returns:
        AbstractLearner: An untrained learner.
    """
    if config.classifier == "LDA":
        return LDALearner()
    elif config.classifier == "SVM":
        return SVMLearner(config.svm_c, config.svm_max_iter, config.seed)
    elif config.classifier == "XGBoost":
        return XGBLearner(
            config.xgb_params,
            config.xgb_num_boost_round,
            config.threads,
            config.seed,
        )
    elif config.classifier == "HistGradientBoosting":
        return HistGBCLearner(config.hgb_params, config.seed)
    raise ValueError(f"Classifier {config.classifier} not supported.")
