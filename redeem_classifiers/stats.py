import numpy as np
import pandas as pd

from .exceptions import NoDecoysError

try:
    profile
except NameError:
    profile = lambda x: x


def to_one_dim_array(values, as_type=None):
    """ Converts list or flattens n-dim array to 1-dim array if possible """

    if isinstance(values, (list, tuple)):
        values = np.asarray(values)
    elif isinstance(values, pd.Series):
        values = values.values
    values = values.flatten()
    assert values.ndim == 1, "values has wrong dimension"
    if as_type is not None:
        return values.astype(as_type)
    return values


def mean_and_std_dev(values):
    return np.mean(values), np.std(values, ddof=1)


def tie_break_keys(ids, n):
    """ Integer keys that order PSM identifiers deterministically """
    if ids is None:
        return np.arange(n)
    ids = to_one_dim_array(ids)
    if len(ids) != n:
        raise ValueError("ids and scores must have the same length.")
    return np.unique(ids, return_inverse=True)[1].ravel()


@profile
def tdc_qvalues(scores, is_decoy, ids=None, competition_factor=1.0):
    """ Compute q-values by target-decoy competition.

    PSMs are ranked by descending score, ties are ordered by identifier. The
    running FDR at each rank is (decoys seen * competition_factor) / targets
    seen, evaluated at the end of each block of tied scores so that tied PSMs
    share one estimate. q-values are the minimum FDR at or below each rank and
    are therefore monotone non-decreasing with decreasing score. Decoys
    receive q-values too.

        Args:
            scores: score per PSM, higher is better
            is_decoy: decoy flag per PSM
            ids(optional): identifiers used to break ties in the ranking
            competition_factor(float): multiplier for the decoy count

        Returns:
            np.ndarray: q-value per PSM in input order
    """

    scores = to_one_dim_array(scores, np.float64)
    is_decoy = to_one_dim_array(is_decoy, bool)

    if len(scores) != len(is_decoy):
        raise ValueError("scores and is_decoy must have the same length.")
    if not is_decoy.any():
        raise NoDecoysError(
            "No decoys available, the false discovery rate is undefined."
        )
    if not np.isfinite(scores).all():
        raise ValueError("Scores must be finite to compute q-values.")

    n = len(scores)
    order = np.lexsort((tie_break_keys(ids, n), -scores))
    sorted_scores = scores[order]
    sorted_decoy = is_decoy[order]

    decoys_seen = np.cumsum(sorted_decoy)
    targets_seen = np.cumsum(~sorted_decoy)

    # index of the last member of the tie block each rank belongs to
    new_block = np.r_[True, sorted_scores[1:] != sorted_scores[:-1]]
    block_ends = np.r_[np.flatnonzero(new_block)[1:] - 1, n - 1]
    ends = block_ends[np.cumsum(new_block) - 1]
    decoys_seen = decoys_seen[ends]
    targets_seen = targets_seen[ends]

    fdr = np.divide(
        decoys_seen * competition_factor,
        targets_seen,
        out=np.ones(n, dtype=np.float64),
        where=targets_seen > 0,
    )
    fdr = np.minimum(fdr, 1.0)

    qvals_sorted = np.minimum.accumulate(fdr[::-1])[::-1]

    qvalues = np.empty(n, dtype=np.float64)
    qvalues[order] = qvals_sorted
    return qvalues


def find_cutoff(scores, is_decoy, cutoff_fdr, ids=None, competition_factor=1.0):
    """ Finds the lowest target score accepted at the specified false discovery rate """

    scores = to_one_dim_array(scores, np.float64)
    is_decoy = to_one_dim_array(is_decoy, bool)
    qvalues = tdc_qvalues(scores, is_decoy, ids, competition_factor)
    passing = (qvalues <= cutoff_fdr) & ~is_decoy
    if not passing.any():
        return np.inf
    return scores[passing].min()


def count_accepted(qvalues, is_decoy, cutoff_fdr):
    """ Number of targets with q-value at or below 'cutoff_fdr' """
    qvalues = to_one_dim_array(qvalues, np.float64)
    is_decoy = to_one_dim_array(is_decoy, bool)
    return int(((qvalues <= cutoff_fdr) & ~is_decoy).sum())


def summary_err_table(
    qvalues, is_decoy, thresholds=(0.001, 0.005, 0.01, 0.02, 0.05, 0.1, 0.2)
):
    """ Summary table of accepted targets and decoys for some typical q-values """

    qvalues = to_one_dim_array(qvalues, np.float64)
    is_decoy = to_one_dim_array(is_decoy, bool)
    thresholds = to_one_dim_array(thresholds, np.float64)

    rows = []
    for threshold in thresholds:
        passing = qvalues <= threshold
        rows.append(
            {
                "qvalue": threshold,
                "targets": int((passing & ~is_decoy).sum()),
                "decoys": int((passing & is_decoy).sum()),
            }
        )
    return pd.DataFrame(rows, columns=["qvalue", "targets", "decoys"])
