import numpy as np
import pandas as pd
import pytest

from redeem_classifiers._config import RunnerConfig
from redeem_classifiers.scoring.data_handling import prepare_data_table


def make_psm_table(n_decoys=500, n_true=400, n_false=100, seed=1, n_noise=2):
    """
    Synthetic PSM table. True targets are perfectly separated from decoys and
    false targets by the 'separating' feature; 'noise_*' features carry no
    signal. Every PSM is its own spectrum.

    Returns:
        tuple: (table, is_true_target)
    """
    rng = np.random.default_rng(seed)
    n = n_decoys + n_true + n_false

    is_decoy = np.zeros(n, dtype=bool)
    is_decoy[:n_decoys] = True
    is_true = np.zeros(n, dtype=bool)
    is_true[n_decoys : n_decoys + n_true] = True

    separating = rng.uniform(0.0, 1.0, size=n)
    separating[is_true] = rng.uniform(2.0, 3.0, size=n_true)

    data = {
        "psm_id": np.arange(n),
        "spectrum_id": np.arange(n),
        "is_decoy": is_decoy,
        "separating": separating,
    }
    for i in range(n_noise):
        data[f"noise_{i + 1}"] = rng.normal(size=n)

    order = rng.permutation(n)
    table = pd.DataFrame(data).iloc[order].reset_index(drop=True)
    return table, is_true[order]


@pytest.fixture
def synthetic():
    return make_psm_table()


@pytest.fixture
def small_table():
    table, _ = make_psm_table(n_decoys=10, n_true=15, n_false=5, seed=7)
    return table


@pytest.fixture
def small_matrix(small_table):
    return prepare_data_table(small_table, RunnerConfig())
