"""
This module defines the rescoring workflow: input preparation, fold
assignment, semi-supervised learning, q-value calibration and assembly of the
scored output.

Classes:
    - RescoreSummary: Summary record of a rescoring run.

Functions:
    - rescore: Rescores a PSM feature table.
    - print_summary: Logs the error table of a run.
"""

import concurrent.futures
import warnings
from collections import namedtuple

import numpy as np
import pandas as pd
from loguru import logger
from tabulate import tabulate

from .._config import RunnerConfig
from ..exceptions import NonConvergenceWarning
from ..stats import find_cutoff, summary_err_table
from ..util import timer
from .classifiers import get_learner
from .convergence import RescoreState
from .data_handling import assign_folds, prepare_data_table, rank_within_groups
from .ensemble import FoldEnsemble
from .semi_supervised import SemiSupervisedLearner

try:
    profile
except NameError:

    def profile(fun):
        return fun


Result = namedtuple(
    "Result", "scored_table summary summary_statistics ensemble history"
)


class RescoreSummary(
    namedtuple(
        "RescoreSummary", "rounds state num_accepted reporting_fdr diagnostic"
    )
):
    """
    Summary record of a rescoring run.

    Attributes:
        rounds (int): Number of semi-supervised rounds run.
        state (RescoreState): CONVERGED or EXHAUSTED.
        num_accepted (int): Targets accepted at the reporting FDR.
        reporting_fdr (float): The reporting FDR threshold.
        diagnostic (str): Why the loop stopped.
    """

    __slots__ = ()

    @property
    def converged(self):
        return self.state is RescoreState.CONVERGED


ACCEPTED = "accepted"
REJECTED = "rejected"
DECOY = "decoy"


def _labels(qvalues, is_decoy, reporting_fdr):
    labels = np.where(qvalues <= reporting_fdr, ACCEPTED, REJECTED).astype(object)
    labels[is_decoy] = DECOY
    return labels


def build_scored_table(matrix, outcome, config):
    """
    Assembles the output table: identity columns of every prepared PSM with
    its final score, q-value, label, rank within its spectrum group and the
    number of rounds run.
    """
    reporting_fdr = config.error_estimation_config.reporting_fdr
    is_decoy = matrix.is_decoy
    return pd.DataFrame(
        {
            config.id_column: matrix.ids,
            config.group_column: matrix["group_id"].values,
            config.decoy_column: is_decoy,
            "score": outcome.scores,
            "q_value": outcome.qvalues,
            "label": _labels(outcome.qvalues, is_decoy, reporting_fdr),
            "rank": rank_within_groups(matrix.group_ids, outcome.scores),
            "rounds": outcome.rounds,
        }
    )


def print_summary(summary_statistics):
    logger.opt(raw=True).info("=" * 80 + "\n")
    logger.opt(raw=True).info(
        tabulate(summary_statistics, headers="keys", showindex=False) + "\n"
    )
    logger.opt(raw=True).info("=" * 80 + "\n")


def _learn(matrix, folds, config, cancel_event):
    learner = get_learner(config)
    workers = min(config.threads, config.num_folds)
    if workers == 1:
        ss_learner = SemiSupervisedLearner.from_config(
            config, learner, cancel_event=cancel_event
        )
        return ss_learner.learn(matrix, folds)

    logger.info(f"Learning on {config.num_folds} folds with {workers} threads.")
    with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as executor:
        ss_learner = SemiSupervisedLearner.from_config(
            config, learner, executor, cancel_event
        )
        return ss_learner.learn(matrix, folds)


@profile
def rescore(table, config=None, cancel_event=None):
    """
    Rescores PSMs by semi-supervised learning with k-fold cross-validation.

    Args:
        table (pd.DataFrame): One row per PSM with identifier, spectrum group,
            decoy flag and numeric feature columns.
        config (RunnerConfig, optional): Run configuration, defaults apply if None.
        cancel_event (threading.Event, optional): Stops the loop at the next
            round boundary when set.

    Returns:
        Result: Scored table, run summary, error table, fold ensemble (None if
        no round completed) and round history.

    Raises:
        InsufficientDataError: If the data or a fold lacks decoys or targets.
        NoDecoysError: If q-values cannot be computed.
    """
    if config is None:
        config = RunnerConfig()
    assert isinstance(config, RunnerConfig)
    logger.debug(f"Rescoring with {config}")

    with timer("rescoring"):
        matrix = prepare_data_table(table, config)
        matrix.log_summary()
        folds = assign_folds(matrix, config.num_folds, config.seed)
        outcome = _learn(matrix, folds, config, cancel_event)

    scored_table = build_scored_table(matrix, outcome, config)
    reporting_fdr = config.error_estimation_config.reporting_fdr
    num_accepted = int((scored_table["label"] == ACCEPTED).sum())

    summary = RescoreSummary(
        rounds=outcome.rounds,
        state=outcome.state,
        num_accepted=num_accepted,
        reporting_fdr=reporting_fdr,
        diagnostic=outcome.diagnostic,
    )
    summary_statistics = summary_err_table(outcome.qvalues, matrix.is_decoy)
    print_summary(summary_statistics)
    cutoff = find_cutoff(
        outcome.scores,
        matrix.is_decoy,
        reporting_fdr,
        matrix.ids,
        config.error_estimation_config.competition_factor,
    )
    logger.debug(f"Score cutoff at q <= {reporting_fdr}: {cutoff:.4f}")

    logger.info(
        f"Rescoring {outcome.state.value} after {outcome.rounds} round(s): "
        f"{num_accepted} targets accepted at q <= {reporting_fdr} "
        f"(initial score {outcome.main_score})."
    )
    if outcome.state is RescoreState.EXHAUSTED:
        message = f"Rescoring did not converge: {outcome.diagnostic}."
        logger.warning(message)
        warnings.warn(message, NonConvergenceWarning)

    ensemble = None
    if outcome.models is not None:
        ensemble = FoldEnsemble(
            outcome.models,
            matrix.feature_names,
            config.ensemble_combination,
            matrix.scaler,
            outcome.normalizers,
        )

    return Result(scored_table, summary, summary_statistics, ensemble, outcome.history)
