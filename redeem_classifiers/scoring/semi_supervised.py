"""
This module implements the iterative semi-supervised learning loop used to
rescore peptide-spectrum matches.

Decoys form the fixed negative class. In every round one model per
cross-validation fold is trained on the PSMs outside that fold, the held-out
PSMs are scored with it, the fold scores are merged into one score table and
targets passing the selection FDR become the positives of the next round.
Targets that do not pass are left out of training; they are never used as
negatives.

Classes:
    - SemiSupervisedLearner: The rescoring state machine.

Functions:
    - make_labels: Builds an immutable training label snapshot.
"""

import concurrent.futures
import time
from collections import namedtuple

import numpy as np
from loguru import logger

from .._config import RunnerConfig
from ..exceptions import DegenerateFeatureError
from ..stats import count_accepted, mean_and_std_dev, tdc_qvalues, tie_break_keys
from .classifiers import AbstractLearner
from .convergence import ConvergenceMonitor, RescoreState
from .data_handling import FeatureMatrix, FoldAssignment, find_top_ranked

try:
    profile
except NameError:
    profile = lambda x: x


POSITIVE = 1
NEGATIVE = -1
UNUSED = 0


RoundRecord = namedtuple(
    "RoundRecord",
    "round state num_positive num_negative num_accepted accepted_ids labels",
)

SemiSupervisedResult = namedtuple(
    "SemiSupervisedResult",
    "scores qvalues models normalizers state rounds diagnostic history main_score",
)


def make_labels(is_decoy, positive):
    """
    Builds a read-only training label snapshot.

    Decoys are always NEGATIVE, targets flagged in 'positive' are POSITIVE and
    all other targets are UNUSED.
    """
    is_decoy = np.asarray(is_decoy, dtype=bool)
    labels = np.full(len(is_decoy), UNUSED, dtype=np.int8)
    labels[np.asarray(positive, dtype=bool) & ~is_decoy] = POSITIVE
    labels[is_decoy] = NEGATIVE
    labels.flags.writeable = False
    return labels


class SemiSupervisedLearner(object):
    """
    Iterative semi-supervised rescoring with k-fold cross-validation.

    Attributes:
        inner_learner (AbstractLearner): Learner trained for every fold and round.
        config (RunnerConfig): The runner configuration.
        executor (concurrent.futures.Executor, optional): Runs fold workers.
            Folds are processed serially if None.
        cancel_event (threading.Event, optional): External cancellation signal,
            checked at round boundaries.
        state (RescoreState): Current state of the loop.
        history (list): One RoundRecord per round, round 0 is the initial ranking.
    """

    def __init__(self, inner_learner, config, executor=None, cancel_event=None):
        assert isinstance(inner_learner, AbstractLearner)
        assert isinstance(config, RunnerConfig)
        self.inner_learner = inner_learner
        self.config = config
        self.executor = executor
        self.cancel_event = cancel_event

        self.competition_factor = config.error_estimation_config.competition_factor
        self.reporting_fdr = config.error_estimation_config.reporting_fdr

        self.state = RescoreState.INITIALIZING
        self.history = []
        self.main_score = None

    @classmethod
    def from_config(cls, config, base_learner, executor=None, cancel_event=None):
        return cls(base_learner, config, executor, cancel_event)

    def _qvalues(self, matrix, scores):
        return tdc_qvalues(
            scores, matrix.is_decoy, matrix.ids, self.competition_factor
        )

    def _accepted_ids(self, matrix, qvalues):
        accepted = (qvalues <= self.reporting_fdr) & ~matrix.is_decoy
        return frozenset(matrix.ids[accepted].tolist())

    def _eligible_targets(self, matrix, scores):
        eligible = ~matrix.is_decoy
        if self.config.ss_top_ranked_only:
            eligible &= find_top_ranked(matrix.group_ids, scores)
        return eligible

    def init_best_feature(self, matrix):
        """
        Chooses the single feature and direction that accepts the most targets.

        Every feature is evaluated in descending and in ascending direction at
        `ss_initial_fdr` (or the reporting FDR if unset).

        Returns:
            tuple: Feature name, whether higher values are better, and the
            feature values oriented so that higher is better.
        """
        X = matrix.get_feature_matrix()
        is_decoy = matrix.is_decoy
        eval_fdr = self.config.ss_initial_fdr or self.reporting_fdr

        best_feat, best_desc, best_positives = 0, True, -1
        for desc in (True, False):
            for i, name in enumerate(matrix.feature_names):
                scores = X[:, i] if desc else -X[:, i]
                num_passing = count_accepted(
                    self._qvalues(matrix, scores), is_decoy, eval_fdr
                )
                logger.trace(
                    f"Feature {name} ({'descending' if desc else 'ascending'}): "
                    f"{num_passing} targets at q <= {eval_fdr}"
                )
                if num_passing > best_positives:
                    best_feat, best_desc, best_positives = i, desc, num_passing

        name = matrix.feature_names[best_feat]
        if best_positives == 0:
            logger.warning(
                f"No target passes q <= {eval_fdr} with any single feature; "
                f"starting from {name}."
            )
        logger.info(
            f"Selected {name} ({'descending' if best_desc else 'ascending'}) as initial "
            f"score with {best_positives} targets at q <= {eval_fdr}."
        )
        scores = X[:, best_feat] if best_desc else -X[:, best_feat]
        return name, best_desc, np.array(scores, dtype=np.float64)

    def initial_scores(self, matrix):
        """
        Returns the initial heuristic ranking scores, higher is better.
        """
        if self.config.ss_use_dynamic_main_score:
            name, _desc, scores = self.init_best_feature(matrix)
            self.main_score = name
            return scores
        self.main_score = self.config.ss_main_score
        return np.array(matrix.main_score, dtype=np.float64)

    def select_initial_positives(self, matrix, scores, qvalues):
        """
        Selects the initial positive targets.

        The top `ss_initial_fraction` of eligible targets by initial score are
        selected, never fewer than `ss_initial_min_count`. With
        `ss_initial_fdr` set, eligible targets passing it are added.

        Returns:
            np.ndarray: Read-only label snapshot.
        """
        eligible = np.flatnonzero(self._eligible_targets(matrix, scores))
        num_select = max(
            int(np.ceil(self.config.ss_initial_fraction * len(eligible))),
            self.config.ss_initial_min_count,
        )
        num_select = min(num_select, len(eligible))

        keys = tie_break_keys(matrix.ids, len(matrix))
        order = eligible[np.lexsort((keys[eligible], -scores[eligible]))]

        positive = np.zeros(len(matrix), dtype=bool)
        positive[order[:num_select]] = True
        if self.config.ss_initial_fdr is not None:
            passing = np.zeros(len(matrix), dtype=bool)
            passing[eligible] = qvalues[eligible] <= self.config.ss_initial_fdr
            positive |= passing

        return make_labels(matrix.is_decoy, positive)

    def select_train_peaks(self, matrix, scores, qvalues):
        """
        Relabels targets from the merged score table.

        Eligible targets with q-value at or below `ss_iteration_fdr` become
        POSITIVE, all other targets UNUSED. Decoys stay NEGATIVE.

        Returns:
            np.ndarray: Read-only label snapshot.
        """
        positive = self._eligible_targets(matrix, scores) & (
            qvalues <= self.config.ss_iteration_fdr
        )
        return make_labels(matrix.is_decoy, positive)

    def learn_fold(self, matrix, folds, labels, k):
        """
        Trains on all labelled PSMs outside fold 'k' and scores fold 'k'.

        Returns:
            tuple: Model snapshot and raw held-out scores.
        """
        train = folds.train_mask(k) & (labels != UNUSED)
        decoy_peaks = matrix.filter_(train & (labels == NEGATIVE))
        target_peaks = matrix.filter_(train & (labels == POSITIVE))
        logger.debug(
            f"Fold {k}: training on {len(decoy_peaks)} decoys and {len(target_peaks)} targets."
        )
        model = self.inner_learner.learn(decoy_peaks, target_peaks)
        return model, model.score(matrix.filter_(folds.test_mask(k)))

    def normalize_scores(self, matrix, scores):
        """
        Standardises merged scores by the mean and standard deviation of all
        decoy scores.

        Fewer than two decoys or decoy scores without spread leave the scores
        unchanged.

        Returns:
            tuple: Normalised scores and the (mean, std) applied.
        """
        decoy_scores = scores[matrix.is_decoy]
        if len(decoy_scores) < 2:
            logger.debug("Fewer than two decoys, scores are not normalised.")
            return scores, (0.0, 1.0)
        mu, nu = mean_and_std_dev(decoy_scores)
        if not np.isfinite(nu) or nu <= 0:
            logger.debug("Decoy scores have no spread, scores are not normalised.")
            return scores, (0.0, 1.0)
        return (scores - mu) / nu, (float(mu), float(nu))

    def _map_folds(self, matrix, folds, labels):
        if self.executor is None:
            return [
                self.learn_fold(matrix, folds, labels, k) for k in range(folds.num_folds)
            ]
        futures = [
            self.executor.submit(self.learn_fold, matrix, folds, labels, k)
            for k in range(folds.num_folds)
        ]
        # all fold workers have to finish before the score table is published
        concurrent.futures.wait(futures)
        return [f.result() for f in futures]

    @profile
    def train_and_score(self, matrix, folds, labels):
        """
        Runs one RETRAINING and SCORING step over all folds.

        Returns:
            tuple: Per-fold models, merged cross-validated scores and the
            normalisation parameters of every fold model.
        """
        self.state = RescoreState.RETRAINING
        results = self._map_folds(matrix, folds, labels)

        self.state = RescoreState.SCORING
        scores = np.empty(len(matrix), dtype=np.float64)
        for k, (_model, fold_scores) in enumerate(results):
            scores[folds.test_mask(k)] = fold_scores
        models = [r[0] for r in results]

        normalizer = (0.0, 1.0)
        if self.config.normalize_fold_scores:
            scores, normalizer = self.normalize_scores(matrix, scores)
        return models, scores, [normalizer] * len(models)

    def _cancelled(self, started_at):
        if self.cancel_event is not None and self.cancel_event.is_set():
            return "cancelled by caller"
        max_runtime = self.config.max_runtime
        if max_runtime is not None and time.monotonic() - started_at >= max_runtime:
            return f"wall-clock budget of {max_runtime} seconds exceeded"
        return None

    def _record(self, round_, labels, accepted):
        record = RoundRecord(
            round=round_,
            state=self.state,
            num_positive=int((labels == POSITIVE).sum()),
            num_negative=int((labels == NEGATIVE).sum()),
            num_accepted=len(accepted),
            accepted_ids=accepted,
            labels=labels,
        )
        self.history.append(record)
        return record

    @profile
    def learn(self, matrix, folds):
        """
        Runs the semi-supervised rescoring loop until convergence, exhaustion
        of the round budget, degenerate training data or cancellation.

        Args:
            matrix (FeatureMatrix): The PSM data.
            folds (FoldAssignment): Cross-validation folds of the PSMs.

        Returns:
            SemiSupervisedResult: Merged scores and q-values of the last
            completed round, its fold models and the loop outcome.
        """
        assert isinstance(matrix, FeatureMatrix)
        assert isinstance(folds, FoldAssignment)
        started_at = time.monotonic()

        self.state = RescoreState.INITIALIZING
        self.history = []
        scores = self.initial_scores(matrix)
        qvalues = self._qvalues(matrix, scores)
        labels = self.select_initial_positives(matrix, scores, qvalues)
        accepted = self._accepted_ids(matrix, qvalues)
        self._record(0, labels, accepted)
        logger.info(
            f"Initial ranking: {len(accepted)} targets at q <= {self.reporting_fdr}, "
            f"{int((labels == POSITIVE).sum())} initial positives."
        )

        monitor = ConvergenceMonitor(self.config.max_rounds, self.config.ss_patience)
        monitor.seed(accepted)

        models, normalizers = None, None
        final_state, diagnostic = None, None
        rounds = 0

        for round_ in range(1, self.config.max_rounds + 1):
            reason = self._cancelled(started_at)
            if reason is not None:
                final_state, diagnostic = RescoreState.EXHAUSTED, reason
                break

            rounds = round_
            try:
                round_models, round_scores, round_normalizers = self.train_and_score(
                    matrix, folds, labels
                )
            except DegenerateFeatureError as e:
                # labels only change after a completed round, a retry would fail again
                logger.error(f"Round {round_}: {e.message}")
                final_state = RescoreState.EXHAUSTED
                diagnostic = f"no discriminative training data in round {round_}: {e.message}"
                break

            models, scores, normalizers = round_models, round_scores, round_normalizers

            self.state = RescoreState.SELECTING
            qvalues = self._qvalues(matrix, scores)
            accepted = self._accepted_ids(matrix, qvalues)
            record = self._record(round_, labels, accepted)
            labels = self.select_train_peaks(matrix, scores, qvalues)

            logger.info(
                f"Round {round_}: trained on {record.num_positive} targets and "
                f"{record.num_negative} decoys, {record.num_accepted} targets at "
                f"q <= {self.reporting_fdr}."
            )

            final_state = monitor.update(round_, accepted)
            if final_state is not None:
                diagnostic = monitor.reason
                break

        if final_state is None:
            final_state = RescoreState.EXHAUSTED
            diagnostic = f"round budget of {self.config.max_rounds} exhausted"

        self.state = final_state
        return SemiSupervisedResult(
            scores=scores,
            qvalues=qvalues,
            models=models,
            normalizers=normalizers,
            state=final_state,
            rounds=rounds,
            diagnostic=diagnostic,
            history=list(self.history),
            main_score=self.main_score,
        )
