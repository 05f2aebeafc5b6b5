"""
This module combines the per-fold models of the last completed rescoring round
into one scorer for PSMs that took no part in training.

No fold model has seen the complete data set, so new PSMs are scored by every
fold model and the per-fold scores are combined (mean or median). Each fold's
scores are first put on the decoy-normalised scale used during rescoring.

Classes:
    - FoldEnsemble: Scores new PSMs with all fold models and persists them.
"""

import pickle

import numpy as np
import pandas as pd
from loguru import logger

from .._config import SUPPORTED_COMBINATIONS
from ..util import get_version
from .data_handling import FeatureMatrix


class FoldEnsemble(object):
    """
    The deployed ensemble of fold models.

    Attributes:
        models (list): Fitted learner per fold.
        feature_names (list): Feature columns the models were trained on, in order.
        combination (str): 'mean' or 'median'.
        scaler (StandardScaler, optional): Scaler fitted on the training features.
        normalizers (list): (mean, std) of the cross-validated decoy scores, one per fold model.
    """

    def __init__(
        self, models, feature_names, combination="mean", scaler=None, normalizers=None
    ):
        if not models:
            raise ValueError("An ensemble needs at least one fold model.")
        if combination not in SUPPORTED_COMBINATIONS:
            raise ValueError(f"Combination rule {combination} not supported.")
        if normalizers is None:
            normalizers = [(0.0, 1.0)] * len(models)
        if len(normalizers) != len(models):
            raise ValueError("One normaliser per fold model is required.")

        self.models = list(models)
        self.feature_names = list(feature_names)
        self.combination = combination
        self.scaler = scaler
        self.normalizers = [(float(mu), float(nu)) for mu, nu in normalizers]

    @property
    def classifier(self):
        return self.models[0].name

    def __len__(self):
        return len(self.models)

    def _check_feature_names(self, feature_names):
        if list(feature_names) != self.feature_names:
            raise ValueError(
                "Feature columns do not match the ensemble: expected %s, got %s."
                % (self.feature_names, list(feature_names))
            )

    def _features(self, data):
        if isinstance(data, FeatureMatrix):
            # features of a prepared matrix are already scaled
            self._check_feature_names(data.feature_names)
            return data.get_feature_matrix()

        missing = [c for c in self.feature_names if c not in data.columns]
        if missing:
            raise ValueError(
                "Feature column(s) %s missing in data to score." % ", ".join(missing)
            )
        X = data[self.feature_names].to_numpy(dtype=np.float64)
        if self.scaler is not None:
            X = self.scaler.transform(X)
        return X

    def fold_scores(self, data):
        """
        Scores 'data' with every fold model.

        Returns:
            np.ndarray: (n_psms, n_folds) array of normalised scores.
        """
        X = self._features(data)
        columns = []
        for model, (mu, nu) in zip(self.models, self.normalizers):
            columns.append((model.score(X) - mu) / nu)
        return np.column_stack(columns)

    def score(self, data):
        """
        Scores new PSMs with the combined fold models.

        Args:
            data (FeatureMatrix or pd.DataFrame): PSMs to score. A DataFrame must
                contain the raw feature columns the ensemble was trained on.

        Returns:
            np.ndarray: Combined score per PSM, higher is more target-like.
        """
        scores = self.fold_scores(data)
        if self.combination == "median":
            return np.median(scores, axis=1)
        return np.mean(scores, axis=1)

    def get_weights(self):
        """
        Per-fold feature weights (linear learners) or importances (tree learners).

        Returns:
            pd.DataFrame: One row per fold and feature.
        """
        rows = []
        for fold, model in enumerate(self.models):
            if hasattr(model, "get_weights"):
                weights = model.get_weights(self.feature_names)["weight"].values
            else:
                importance = model.importance or {}
                weights = [
                    importance.get(f"f{i}", 0.0) for i in range(len(self.feature_names))
                ]
            for name, weight in zip(self.feature_names, weights):
                rows.append({"fold": fold, "feature": name, "weight": float(weight)})
        return pd.DataFrame(rows, columns=["fold", "feature", "weight"])

    def save(self, path):
        """
        Writes the ensemble and its metadata to 'path' with pickle.
        """
        payload = {
            "version": get_version(),
            "classifier": self.classifier,
            "feature_names": self.feature_names,
            "combination": self.combination,
            "ensemble": self,
        }
        with open(path, "wb") as file:
            pickle.dump(payload, file)
        logger.info(f"{self.classifier} ensemble of {len(self)} fold models written to {path}")

    @classmethod
    def load(cls, path, feature_names=None):
        """
        Reads an ensemble written by `save`.

        Args:
            path (str): Pickle file.
            feature_names (list, optional): Feature columns of the data that will
                be scored; checked against the stored ones.

        Returns:
            FoldEnsemble: The restored ensemble.
        """
        with open(path, "rb") as file:
            payload = pickle.load(file)

        ensemble = payload.get("ensemble") if isinstance(payload, dict) else None
        if not isinstance(ensemble, cls):
            raise ValueError(f"{path} does not contain a fold ensemble.")
        if payload["feature_names"] != ensemble.feature_names:
            raise ValueError(f"{path} has inconsistent feature metadata.")
        if payload["version"] != get_version():
            logger.warning(
                f"Ensemble was written by version {payload['version']}, "
                f"running {get_version()}."
            )
        if feature_names is not None:
            ensemble._check_feature_names(feature_names)

        logger.debug(
            f"Loaded {payload['classifier']} ensemble ({payload['combination']}) with "
            f"features {', '.join(payload['feature_names'])}"
        )
        return ensemble
