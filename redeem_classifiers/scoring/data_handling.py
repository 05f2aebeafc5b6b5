"""
This module provides utilities for handling and processing PSM data for semi-supervised rescoring.

It includes functions for cleaning and validating data, preparing the feature
table, ranking PSMs within spectrum groups and assigning cross-validation
folds. Additionally, it defines the `FeatureMatrix` class, which encapsulates
read-only access to the PSMs, their decoy flags and their features.

Classes:
    - FeatureMatrix: Immutable tabular view of PSMs and their features.
    - FoldAssignment: Immutable mapping of PSMs to cross-validation folds.

Functions:
    - check_for_unique_ids: Checks if PSM identifiers are unique.
    - cleanup_and_check: Cleans up the input DataFrame and validates its structure.
    - prepare_data_table: Prepares the input data table for rescoring.
    - rank_within_groups: Ranks PSMs by score within their spectrum group.
    - find_top_ranked: Flags the best scoring PSM of each spectrum group.
    - assign_folds: Stratified, reproducible assignment of PSMs to folds.
"""

import numpy as np
import pandas as pd
from loguru import logger
from sklearn.preprocessing import StandardScaler

from ..exceptions import InsufficientDataError

try:
    profile
except NameError:

    def profile(fun):
        return fun


BOOKKEEPING_COLUMNS = ["psm_id", "group_id", "group_num_id", "is_decoy", "main_score"]


def check_for_unique_ids(ids):
    """
    Checks if PSM identifiers are unique.

    Args:
        ids (array-like): PSM identifiers.

    Returns:
        bool: True if no identifier occurs twice, False otherwise.
    """
    return bool(pd.Index(ids).is_unique)


@profile
def cleanup_and_check(df, feature_columns):
    """
    Cleans up the input DataFrame and validates its structure.

    Rows with missing feature values are removed. At least one decoy and one
    target must remain.

    Args:
        df (pd.DataFrame): Prepared data.
        feature_columns (list): Feature columns that must be complete.

    Returns:
        pd.DataFrame: Cleaned and validated data.
    """
    sub_df = df.loc[:, feature_columns]
    flags = ~pd.isnull(sub_df)
    valid_rows = flags.all(axis=1)
    logger.trace(f"{valid_rows.sum()} valid rows out of {len(df)}")
    df_cleaned = df.loc[valid_rows, :].reset_index(drop=True)

    n_decoy = int(df_cleaned["is_decoy"].sum())
    n_target = len(df_cleaned) - n_decoy

    logger.info("Data set contains %d decoy and %d target PSMs." % (n_decoy, n_target))
    if n_decoy == 0 or n_target == 0:
        raise InsufficientDataError(
            "At least one decoy and one target PSM with complete features are required."
        )

    return df_cleaned


def _numeric_columns(table, exclude):
    return [
        c
        for c in table.columns
        if c not in exclude and pd.api.types.is_numeric_dtype(table[c])
    ]


def prepare_data_table(table, config):
    """
    Prepares the input data table for rescoring.

    Args:
        table (pd.DataFrame): Input data table, one row per PSM.
        config (RunnerConfig): Column names and feature options.

    Returns:
        FeatureMatrix: The prepared PSM data.
    """
    N = len(table)
    if not N:
        raise InsufficientDataError("Empty input table supplied.")
    header = table.columns.values

    for name in (config.id_column, config.decoy_column):
        if name not in header:
            raise InsufficientDataError("Column %s is not in input table." % name)

    main_score_name = None
    if not config.ss_use_dynamic_main_score:
        main_score_name = config.ss_main_score
        if main_score_name not in header:
            raise InsufficientDataError(
                "Main score column %s is not in input table." % main_score_name
            )

    if config.feature_columns is not None:
        missing = set(config.feature_columns) - set(header)
        if missing:
            missing_txt = ", ".join(["'%s'" % m for m in sorted(missing)])
            raise InsufficientDataError("Feature column(s) %s missing in input table." % missing_txt)
        feature_columns = list(config.feature_columns)
    else:
        feature_columns = _numeric_columns(
            table,
            exclude={
                config.id_column,
                config.group_column,
                config.decoy_column,
                main_score_name,
            },
        )

    used_feature_columns = []
    for col in feature_columns:
        if pd.isnull(table[col]).all():
            logger.debug(
                f"Column {col} contains only invalid/missing values. Column will be dropped."
            )
            continue
        used_feature_columns.append(col)

    if not used_feature_columns:
        raise InsufficientDataError("No usable feature column is in input table.")

    ids = table[config.id_column].values
    if not check_for_unique_ids(ids):
        raise InsufficientDataError(
            "%s values are not unique in input table." % config.id_column
        )

    if config.group_column in header:
        group_ids = table[config.group_column].values
    else:
        logger.debug(
            f"Column {config.group_column} not found, every PSM forms its own group."
        )
        group_ids = ids

    data = dict(
        psm_id=ids,
        group_id=group_ids,
        group_num_id=pd.factorize(group_ids)[0],
        is_decoy=table[config.decoy_column].values.astype(bool),
        main_score=(
            table[main_score_name].values.astype(np.float64)
            if main_score_name is not None
            else np.full(N, np.nan)
        ),
    )
    for col in used_feature_columns:
        data[col] = table[col].values.astype(np.float64)

    df = pd.DataFrame(data, columns=BOOKKEEPING_COLUMNS + used_feature_columns)
    complete_columns = used_feature_columns + (
        ["main_score"] if main_score_name is not None else []
    )
    df = cleanup_and_check(df, complete_columns)

    scaler = None
    if config.ss_scale_features:
        scaler = StandardScaler()
        df.loc[:, used_feature_columns] = scaler.fit_transform(
            df[used_feature_columns].values
        )

    return FeatureMatrix(df, used_feature_columns, scaler)


def rank_within_groups(group_ids, scores):
    """
    Ranks PSMs by descending score within their spectrum group.

    Args:
        group_ids (array-like): Spectrum group key per PSM.
        scores (array-like): Score per PSM.

    Returns:
        np.ndarray: Rank per PSM, 1 for the best PSM of each group.
    """
    ranks = (
        pd.Series(np.asarray(scores, dtype=np.float64))
        .groupby(np.asarray(group_ids))
        .rank(method="first", ascending=False)
    )
    return ranks.values.astype(np.int64)


def find_top_ranked(group_ids, scores):
    """
    Flags the best scoring PSM of each spectrum group.
    """
    return rank_within_groups(group_ids, scores) == 1


class FeatureMatrix(object):
    """
    Read-only view of PSMs: identifiers, spectrum groups, decoy flags, the
    initial heuristic score and the feature vectors.

    Attributes:
        df (pd.DataFrame): The underlying data.
        feature_names (list): Ordered feature columns.
        scaler (StandardScaler, optional): Scaler fitted on the features.
    """

    @profile
    def __init__(self, df, feature_names, scaler=None):
        object.__setattr__(self, "df", df.reset_index(drop=True).copy())
        object.__setattr__(self, "feature_names", list(feature_names))
        object.__setattr__(self, "scaler", scaler)
        X = self.df[self.feature_names].to_numpy(dtype=np.float64, copy=True)
        X.flags.writeable = False
        object.__setattr__(self, "_X", X)

    def __setattr__(self, name, value):
        raise AttributeError("FeatureMatrix is immutable.")

    def __len__(self):
        return len(self.df)

    def __getitem__(self, key):
        return self.df[key].copy()

    def _readonly(self, column, dtype=None):
        values = self.df[column].to_numpy(dtype=dtype, copy=True)
        values.flags.writeable = False
        return values

    @property
    def ids(self):
        return self._readonly("psm_id")

    @property
    def group_ids(self):
        return self._readonly("group_num_id", np.int64)

    @property
    def is_decoy(self):
        return self._readonly("is_decoy", bool)

    @property
    def main_score(self):
        return self._readonly("main_score", np.float64)

    @property
    def num_decoys(self):
        return int(self.df.is_decoy.sum())

    @property
    def num_targets(self):
        return len(self) - self.num_decoys

    def log_summary(self):
        """
        Logs a summary of the input data, including the number of PSMs,
        spectrum groups, and features.
        """
        logger.info("Summary of input data:")
        logger.info("%d PSMs" % len(self.df))
        logger.info("%d spectrum groups" % len(self.df.group_id.unique()))
        logger.info("%d features" % len(self.feature_names))

    def get_feature_matrix(self):
        """
        Retrieves the feature matrix for learning and scoring.

        Returns:
            np.ndarray: Read-only (n_psms, n_features) array.
        """
        return self._X

    def get_decoy_peaks(self):
        return self.filter_(self.df.is_decoy.values)

    def get_target_peaks(self):
        return self.filter_(~self.df.is_decoy.values)

    def filter_(self, idx):
        """
        Filters the data based on the given boolean index.

        Returns:
            FeatureMatrix: A new FeatureMatrix containing the selected PSMs.
        """
        return FeatureMatrix(self.df[np.asarray(idx)], self.feature_names, self.scaler)


class FoldAssignment(object):
    """
    Immutable mapping of PSM identifiers to cross-validation folds.

    Attributes:
        psm_ids (np.ndarray): PSM identifiers in matrix order.
        folds (np.ndarray): Fold index per PSM, aligned with psm_ids.
        num_folds (int): Number of folds K.
    """

    def __init__(self, psm_ids, folds, num_folds, is_decoy):
        psm_ids = np.array(psm_ids, copy=True)
        folds = np.array(folds, dtype=np.int64, copy=True)
        is_decoy = np.array(is_decoy, dtype=bool, copy=True)
        for values in (psm_ids, folds, is_decoy):
            values.flags.writeable = False
        object.__setattr__(self, "psm_ids", psm_ids)
        object.__setattr__(self, "folds", folds)
        object.__setattr__(self, "num_folds", int(num_folds))
        object.__setattr__(self, "_is_decoy", is_decoy)
        object.__setattr__(
            self, "_lookup", dict(zip(psm_ids.tolist(), folds.tolist()))
        )

    def __setattr__(self, name, value):
        raise AttributeError("FoldAssignment is immutable.")

    def __len__(self):
        return len(self.folds)

    def fold_of(self, psm_id):
        return self._lookup[psm_id]

    def test_mask(self, k):
        return self.folds == k

    def train_mask(self, k):
        return self.folds != k

    def fold_sizes(self):
        return np.bincount(self.folds, minlength=self.num_folds)

    def decoy_counts(self):
        return np.bincount(self.folds[self._is_decoy], minlength=self.num_folds)

    def as_series(self):
        return pd.Series(self.folds, index=self.psm_ids, name="fold")


@profile
def assign_folds(matrix, num_folds, seed):
    """
    Assigns every PSM to exactly one of 'num_folds' folds.

    Decoys and targets are shuffled separately and dealt round-robin, decoys
    first, so fold sizes differ by at most one and every fold receives a
    share of decoys within one of the global ratio.

    Args:
        matrix (FeatureMatrix): The PSM data.
        num_folds (int): Number of folds K (>= 2).
        seed (int): Random seed.

    Returns:
        FoldAssignment: The fold of every PSM.
    """
    if num_folds < 2:
        raise ValueError(f"num_folds must be at least 2, got {num_folds}.")

    is_decoy = matrix.is_decoy
    decoy_idx = np.flatnonzero(is_decoy)
    target_idx = np.flatnonzero(~is_decoy)

    if len(decoy_idx) < num_folds or len(target_idx) < num_folds:
        raise InsufficientDataError(
            "Cannot assign %d decoys and %d targets to %d folds without "
            "leaving a fold without decoys or targets."
            % (len(decoy_idx), len(target_idx), num_folds)
        )

    rng = np.random.default_rng(seed)
    rng.shuffle(decoy_idx)
    rng.shuffle(target_idx)

    order = np.concatenate((decoy_idx, target_idx))
    folds = np.empty(len(order), dtype=np.int64)
    folds[order] = np.arange(len(order)) % num_folds

    assignment = FoldAssignment(matrix.ids, folds, num_folds, is_decoy)
    logger.debug(
        f"Fold sizes: {assignment.fold_sizes().tolist()}, "
        f"decoys per fold: {assignment.decoy_counts().tolist()}"
    )
    return assignment
