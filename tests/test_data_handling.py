import numpy as np
import pandas as pd
import pytest

from redeem_classifiers._config import RunnerConfig
from redeem_classifiers.exceptions import InsufficientDataError
from redeem_classifiers.scoring.data_handling import (
    FeatureMatrix,
    assign_folds,
    check_for_unique_ids,
    find_top_ranked,
    prepare_data_table,
    rank_within_groups,
)


def test_check_for_unique_ids():
    assert check_for_unique_ids([1, 2, 3]) is True
    assert check_for_unique_ids(["a", "b"]) is True
    assert check_for_unique_ids([1, 2, 1]) is False
    assert check_for_unique_ids(np.array(["1", "1"])) is False
    assert check_for_unique_ids(pd.Series([1.0, 2.0, 1.0])) is False


def test_prepare_selects_numeric_features(small_table):
    table = small_table.assign(peptide="PEPTIDE")
    matrix = prepare_data_table(table, RunnerConfig())

    assert matrix.feature_names == ["separating", "noise_1", "noise_2"]
    assert len(matrix) == len(table)
    assert matrix.num_decoys == 10
    assert matrix.num_targets == 20
    assert matrix.get_feature_matrix().shape == (30, 3)
    assert matrix.is_decoy.dtype == bool


def test_prepare_configured_columns(small_table):
    table = small_table.rename(
        columns={"psm_id": "PSM", "spectrum_id": "scan", "is_decoy": "decoy"}
    )
    config = RunnerConfig(
        id_column="PSM",
        group_column="scan",
        decoy_column="decoy",
        feature_columns=["noise_2", "separating"],
    )
    matrix = prepare_data_table(table, config)

    assert matrix.feature_names == ["noise_2", "separating"]
    np.testing.assert_array_equal(matrix.ids, table.PSM.values)


def test_prepare_main_score_column(small_table):
    config = RunnerConfig(ss_main_score="separating")
    matrix = prepare_data_table(small_table, config)

    assert "separating" not in matrix.feature_names
    np.testing.assert_array_equal(matrix.main_score, small_table.separating.values)


def test_prepare_without_group_column(small_table):
    matrix = prepare_data_table(small_table.drop(columns="spectrum_id"), RunnerConfig())

    assert len(np.unique(matrix.group_ids)) == len(matrix)


def test_prepare_drops_missing_values(small_table):
    table = small_table.copy()
    table["empty"] = np.nan
    table.loc[3, "noise_1"] = np.nan

    matrix = prepare_data_table(table, RunnerConfig())

    assert "empty" not in matrix.feature_names
    assert len(matrix) == len(table) - 1
    assert table.loc[3, "psm_id"] not in set(matrix.ids)


def test_prepare_scales_features(small_table):
    matrix = prepare_data_table(small_table, RunnerConfig(ss_scale_features=True))

    X = matrix.get_feature_matrix()
    np.testing.assert_almost_equal(X.mean(axis=0), np.zeros(3))
    assert matrix.scaler is not None


@pytest.mark.parametrize(
    "modify",
    [
        lambda t: t.iloc[:0],
        lambda t: t.drop(columns="is_decoy"),
        lambda t: t.drop(columns="psm_id"),
        lambda t: t.assign(psm_id=0),
        lambda t: t.assign(is_decoy=False),
        lambda t: t.assign(is_decoy=True),
        lambda t: t[["psm_id", "is_decoy"]],
    ],
)
def test_prepare_insufficient_data(small_table, modify):
    with pytest.raises(InsufficientDataError):
        prepare_data_table(modify(small_table), RunnerConfig())


def test_prepare_missing_feature_column(small_table):
    with pytest.raises(InsufficientDataError):
        prepare_data_table(small_table, RunnerConfig(feature_columns=["missing"]))


def test_feature_matrix_is_immutable(small_matrix):
    with pytest.raises(AttributeError):
        small_matrix.df = None

    with pytest.raises(ValueError):
        small_matrix.get_feature_matrix()[0, 0] = 1.0

    with pytest.raises(ValueError):
        small_matrix.is_decoy[0] = True


def test_feature_matrix_filter(small_matrix):
    decoys = small_matrix.get_decoy_peaks()
    targets = small_matrix.get_target_peaks()

    assert isinstance(decoys, FeatureMatrix)
    assert len(decoys) == 10
    assert decoys.is_decoy.all()
    assert len(targets) == 20
    assert not targets.is_decoy.any()
    assert targets.feature_names == small_matrix.feature_names


def test_rank_within_groups():
    group_ids = [1, 1, 1, 2, 2, 3]
    scores = [0.5, 2.0, 1.0, 3.0, 4.0, 0.0]

    np.testing.assert_array_equal(rank_within_groups(group_ids, scores), [3, 1, 2, 2, 1, 1])
    np.testing.assert_array_equal(
        find_top_ranked(group_ids, scores), [False, True, False, False, True, True]
    )


def test_assign_folds_sizes(small_matrix):
    folds = assign_folds(small_matrix, 3, 42)

    assert sorted(folds.fold_sizes().tolist()) == [10, 10, 10]
    for count in folds.decoy_counts():
        assert 3 <= count <= 4
    assert set(folds.folds.tolist()) == {0, 1, 2}


def test_assign_folds_partition(small_matrix):
    folds = assign_folds(small_matrix, 3, 42)

    for k in range(3):
        assert not (folds.test_mask(k) & folds.train_mask(k)).any()
        assert (folds.test_mask(k) | folds.train_mask(k)).all()
    for psm_id, fold in zip(small_matrix.ids, folds.folds):
        assert folds.fold_of(psm_id) == fold

    series = folds.as_series()
    assert series.index.is_unique
    assert len(series) == len(small_matrix)


def test_assign_folds_reproducible(small_matrix):
    first = assign_folds(small_matrix, 3, 11)
    second = assign_folds(small_matrix, 3, 11)

    np.testing.assert_array_equal(first.folds, second.folds)


@pytest.mark.parametrize("num_folds", [2, 4, 5])
def test_assign_folds_balanced(num_folds):
    table = pd.DataFrame(
        {
            "psm_id": np.arange(103),
            "is_decoy": np.arange(103) % 3 == 0,
            "feature": np.linspace(0, 1, 103),
        }
    )
    matrix = prepare_data_table(table, RunnerConfig())
    folds = assign_folds(matrix, num_folds, 0)

    sizes = folds.fold_sizes()
    decoys = folds.decoy_counts()
    assert sizes.max() - sizes.min() <= 1
    assert decoys.max() - decoys.min() <= 1
    assert sizes.sum() == 103


def test_assign_folds_immutable(small_matrix):
    folds = assign_folds(small_matrix, 3, 42)

    with pytest.raises(AttributeError):
        folds.num_folds = 4
    with pytest.raises(ValueError):
        folds.folds[0] = 2


def test_assign_folds_insufficient_decoys():
    table = pd.DataFrame(
        {
            "psm_id": np.arange(10),
            "is_decoy": [True, True] + [False] * 8,
            "feature": np.arange(10.0),
        }
    )
    matrix = prepare_data_table(table, RunnerConfig())

    with pytest.raises(InsufficientDataError):
        assign_folds(matrix, 3, 42)


def test_assign_folds_invalid_k(small_matrix):
    with pytest.raises(ValueError):
        assign_folds(small_matrix, 1, 42)
