"""
Convergence monitoring for the semi-supervised rescoring loop.

The monitor compares the set of PSMs accepted at the reporting FDR between
consecutive rounds and decides whether the loop continues, has converged or
has exhausted its round budget.
"""

import enum

from loguru import logger


class RescoreState(enum.Enum):
    INITIALIZING = "initializing"
    RETRAINING = "retraining"
    SCORING = "scoring"
    SELECTING = "selecting"
    CONVERGED = "converged"
    EXHAUSTED = "exhausted"

    @property
    def is_final(self):
        return self in (RescoreState.CONVERGED, RescoreState.EXHAUSTED)


class ConvergenceMonitor(object):
    """
    Tracks the accepted PSM set across rounds.

    Attributes:
        max_rounds (int): Round budget.
        patience (int): Number of consecutive rounds with a decreasing accepted
            count tolerated; one more stops the loop.
        previous (frozenset): Accepted identifiers of the previous round.
        num_decreasing (int): Current streak of rounds with fewer accepted PSMs.
        reason (str): Why the last final state was reached.
    """

    def __init__(self, max_rounds, patience):
        assert max_rounds >= 1
        assert patience >= 0
        self.max_rounds = max_rounds
        self.patience = patience
        self.previous = None
        self.num_decreasing = 0
        self.reason = None

    def seed(self, accepted_ids):
        """
        Registers the accepted set of the initial ranking as the first reference.
        """
        self.previous = frozenset(accepted_ids)
        self.num_decreasing = 0

    def update(self, round_, accepted_ids):
        """
        Registers the accepted set of a completed round.

        Args:
            round_ (int): 1-based index of the completed round.
            accepted_ids (iterable): PSM identifiers accepted at the reporting FDR.

        Returns:
            RescoreState or None: CONVERGED or EXHAUSTED if the loop must stop,
            None to continue.
        """
        accepted = frozenset(accepted_ids)
        previous = self.previous
        self.previous = accepted

        if previous is not None:
            if accepted == previous:
                self.reason = f"accepted set unchanged in round {round_}"
                logger.info(
                    f"Converged in round {round_}: {len(accepted)} accepted PSMs unchanged."
                )
                return RescoreState.CONVERGED

            if len(accepted) < len(previous):
                self.num_decreasing += 1
                logger.debug(
                    f"Accepted PSMs decreased from {len(previous)} to {len(accepted)} "
                    f"({self.num_decreasing} consecutive round(s))."
                )
            else:
                self.num_decreasing = 0

            if self.num_decreasing > self.patience:
                self.reason = (
                    f"accepted count decreased for {self.num_decreasing} consecutive rounds"
                )
                logger.info(f"Stopping in round {round_}: {self.reason}.")
                return RescoreState.CONVERGED

        if round_ >= self.max_rounds:
            self.reason = f"round budget of {self.max_rounds} exhausted"
            return RescoreState.EXHAUSTED

        return None
