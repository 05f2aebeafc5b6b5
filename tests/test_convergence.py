import pytest

from redeem_classifiers.scoring.convergence import ConvergenceMonitor, RescoreState


def test_identical_set_converges():
    monitor = ConvergenceMonitor(max_rounds=10, patience=2)
    monitor.seed([1, 2, 3])

    assert monitor.update(1, [1, 2, 3, 4]) is None
    assert monitor.update(2, [4, 3, 2, 1]) is RescoreState.CONVERGED
    assert "unchanged" in monitor.reason


def test_seed_set_is_compared_in_first_round():
    monitor = ConvergenceMonitor(max_rounds=10, patience=2)
    monitor.seed(["a", "b"])

    assert monitor.update(1, ["a", "b"]) is RescoreState.CONVERGED


def test_degradation_stops_after_patience():
    monitor = ConvergenceMonitor(max_rounds=10, patience=2)
    monitor.seed(range(10))

    assert monitor.update(1, range(9)) is None
    assert monitor.update(2, range(8)) is None
    assert monitor.update(3, range(7)) is RescoreState.CONVERGED
    assert monitor.num_decreasing == 3


def test_improvement_resets_degradation():
    monitor = ConvergenceMonitor(max_rounds=10, patience=1)
    monitor.seed(range(10))

    assert monitor.update(1, range(9)) is None
    assert monitor.update(2, range(12)) is None
    assert monitor.num_decreasing == 0
    assert monitor.update(3, range(11)) is None
    assert monitor.update(4, range(10)) is RescoreState.CONVERGED


def test_equal_size_different_set_continues():
    monitor = ConvergenceMonitor(max_rounds=10, patience=0)
    monitor.seed([1, 2, 3])

    assert monitor.update(1, [2, 3, 4]) is None
    assert monitor.num_decreasing == 0


def test_round_budget_exhausted():
    monitor = ConvergenceMonitor(max_rounds=3, patience=2)
    monitor.seed([])

    assert monitor.update(1, [1]) is None
    assert monitor.update(2, [1, 2]) is None
    assert monitor.update(3, [1, 2, 3]) is RescoreState.EXHAUSTED
    assert "budget" in monitor.reason


def test_convergence_wins_over_budget():
    monitor = ConvergenceMonitor(max_rounds=1, patience=2)
    monitor.seed([1])

    assert monitor.update(1, [1]) is RescoreState.CONVERGED


@pytest.mark.parametrize(
    "state, final",
    [
        (RescoreState.INITIALIZING, False),
        (RescoreState.RETRAINING, False),
        (RescoreState.SCORING, False),
        (RescoreState.SELECTING, False),
        (RescoreState.CONVERGED, True),
        (RescoreState.EXHAUSTED, True),
    ],
)
def test_final_states(state, final):
    assert state.is_final is final
