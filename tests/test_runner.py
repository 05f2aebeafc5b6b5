import threading
import warnings

import numpy as np
import pandas as pd
import pytest

from redeem_classifiers import (
    InsufficientDataError,
    NonConvergenceWarning,
    RescoreState,
    RunnerConfig,
    rescore,
)
from redeem_classifiers.scoring.semi_supervised import NEGATIVE

from conftest import make_psm_table


def test_rescore_end_to_end(synthetic):
    table, is_true = synthetic

    result = rescore(table, RunnerConfig(seed=3))
    scored = result.scored_table

    assert list(scored.columns) == [
        "psm_id",
        "spectrum_id",
        "is_decoy",
        "score",
        "q_value",
        "label",
        "rank",
        "rounds",
    ]
    assert len(scored) == 1000
    np.testing.assert_array_equal(scored.psm_id.values, table.psm_id.values)

    accepted = scored.label.eq("accepted").values
    assert accepted[is_true].mean() >= 0.95
    assert not (accepted & scored.is_decoy.values).any()
    assert scored.loc[scored.is_decoy, "label"].eq("decoy").all()
    assert (scored.loc[accepted, "q_value"] <= 0.01).all()
    assert scored.loc[~scored.is_decoy & ~accepted, "q_value"].gt(0.01).all()
    assert (scored["rank"] == 1).all()
    assert (scored.rounds == result.summary.rounds).all()

    summary = result.summary
    assert summary.state.is_final
    assert summary.num_accepted == accepted.sum()
    assert summary.reporting_fdr == 0.01
    assert summary.converged == (summary.state is RescoreState.CONVERGED)
    assert 1 <= summary.rounds <= 10


def test_rescore_is_deterministic(synthetic):
    table, _ = synthetic

    first = rescore(table, RunnerConfig(seed=5))
    second = rescore(table, RunnerConfig(seed=5))

    assert first.summary == second.summary
    pd.testing.assert_frame_equal(first.scored_table, second.scored_table)


def test_rescore_threads(synthetic):
    table, _ = synthetic

    serial = rescore(table, RunnerConfig(threads=1))
    parallel = rescore(table, RunnerConfig(threads=3))

    assert serial.summary.rounds == parallel.summary.rounds
    assert set(serial.scored_table.psm_id[serial.scored_table.label == "accepted"]) == set(
        parallel.scored_table.psm_id[parallel.scored_table.label == "accepted"]
    )


def test_rescore_history(synthetic):
    table, _ = synthetic

    result = rescore(table)

    assert result.history[0].round == 0
    assert len(result.history) <= RunnerConfig().max_rounds + 1
    is_decoy = table.is_decoy.values
    for record in result.history:
        assert ((record.labels == NEGATIVE) == is_decoy).all()


def test_rescore_summary_statistics(synthetic):
    table, _ = synthetic

    result = rescore(table)
    stats = result.summary_statistics

    assert list(stats.columns) == ["qvalue", "targets", "decoys"]
    assert stats.set_index("qvalue").loc[0.01, "targets"] == result.summary.num_accepted


def test_rescore_main_score_column(synthetic):
    table, is_true = synthetic
    table = table.assign(search_score=table.separating)

    result = rescore(table, RunnerConfig(ss_main_score="search_score"))

    accepted = result.scored_table.label.eq("accepted").values
    assert accepted[is_true].mean() >= 0.95


def test_rescore_svm(synthetic):
    table, is_true = synthetic

    result = rescore(table, RunnerConfig(classifier="SVM", ss_num_iter=3))

    accepted = result.scored_table.label.eq("accepted").values
    assert accepted[is_true].mean() >= 0.95
    assert result.ensemble.classifier == "SVM"


@pytest.mark.parametrize("classifier", ["XGBoost", "HistGradientBoosting"])
def test_rescore_tree_classifiers(synthetic, classifier):
    table, is_true = synthetic
    config = RunnerConfig(
        classifier=classifier, xgb_num_boost_round=20, hgb_params={"max_iter": 20}
    )

    result = rescore(table, config)

    accepted = result.scored_table.label.eq("accepted").values
    assert accepted[is_true].mean() >= 0.95
    assert not (accepted & table.is_decoy.values).any()
    assert result.ensemble.classifier == classifier


def test_rescore_exhausted_warns(synthetic):
    table, _ = synthetic
    event = threading.Event()
    event.set()

    with pytest.warns(NonConvergenceWarning, match="cancelled"):
        result = rescore(table, cancel_event=event)

    assert result.summary.state is RescoreState.EXHAUSTED
    assert not result.summary.converged
    assert result.summary.rounds == 0
    assert result.ensemble is None
    assert len(result.scored_table) == 1000


def test_rescore_converged_does_not_warn():
    table = pd.DataFrame(
        {
            "psm_id": np.arange(400),
            "is_decoy": np.arange(400) >= 200,
            "separating": np.r_[np.linspace(2.0, 3.0, 200), np.linspace(0.0, 1.0, 200)],
            "other": np.tile([0.0, 1.0], 200),
        }
    )

    with warnings.catch_warnings():
        warnings.simplefilter("error", NonConvergenceWarning)
        result = rescore(table)

    assert result.summary.converged
    assert result.summary.num_accepted == 200


def test_rescore_insufficient_data():
    table = pd.DataFrame(
        {"psm_id": [1, 2, 3], "is_decoy": [False, False, False], "feature": [1.0, 2.0, 3.0]}
    )

    with pytest.raises(InsufficientDataError):
        rescore(table)


def test_rescore_one_decoy_per_fold():
    table, _ = make_psm_table(n_decoys=3, n_true=50, n_false=10, seed=2)

    with warnings.catch_warnings():
        warnings.simplefilter("ignore", NonConvergenceWarning)
        result = rescore(table)

    assert result.summary.rounds >= 1
    assert result.ensemble is not None
    assert len(result.history) >= 2
    assert "spread" not in (result.summary.diagnostic or "")
