import numpy as np

from motifhmm.learning import (
    baum_welch_iteration,
    expected_counts,
    parameter_change,
    reestimate,
    viterbi_counts,
    viterbi_iteration,
)
from motifhmm.utils import encode


def test_expected_counts_totals(motif_model):
    x = encode("ttacgtgacgta")
    T = np.array(motif_model.transition)
    E = np.array(motif_model.emission)
    log_lik, C_T, C_E = expected_counts(T, E, x)
    np.testing.assert_allclose(log_lik, motif_model.log_likelihood(x))
    # one transition and one emission per position
    np.testing.assert_allclose(C_T.sum(), len(x))
    np.testing.assert_allclose(C_E.sum(), len(x))
    assert np.all(C_T[T == 0] == 0)


def test_expected_counts_weight(motif_model):
    x = encode("acgtacgt")
    T = np.array(motif_model.transition)
    E = np.array(motif_model.emission)
    _, C_T, C_E = expected_counts(T, E, x)
    _, C_T2, C_E2 = expected_counts(T, E, x, weight=2.5)
    np.testing.assert_allclose(C_T2, 2.5 * C_T)
    np.testing.assert_allclose(C_E2, 2.5 * C_E)


def test_degenerate_symbols_spread_counts(bg_model):
    x = encode("nnnn")
    T = np.array(bg_model.transition)
    E = np.array(bg_model.emission)
    _, _, C_E = expected_counts(T, E, x)
    np.testing.assert_allclose(C_E[1], 1.0)


def test_viterbi_counts(motif_model):
    x = encode("ggacgtgg")
    T = np.array(motif_model.transition)
    E = np.array(motif_model.emission)
    log_p, C_T, C_E = viterbi_counts(T, E, x)
    path, expected_log_p = motif_model.viterbi(x)
    assert log_p == expected_log_p
    assert list(path) == [1, 1, 2, 3, 4, 5, 1, 1]
    assert C_T[0, 1] == 1 and C_T[1, 2] == 1 and C_T[5, 1] == 1
    assert C_E[2, 0] == 1 and C_E[1, 2] == 4


def test_reestimate_preserves_topology(motif_model):
    T = np.array(motif_model.transition)
    E = np.array(motif_model.emission)
    C_T = np.ones_like(T)
    C_E = np.ones_like(E)
    rows = range(motif_model.n_states)
    T_new, E_new = reestimate(T, E, C_T, C_E, rows, [2], transition_pseudo_count=1.0)
    np.testing.assert_array_equal(T_new > 0, T > 0)
    np.testing.assert_allclose(T_new.sum(1), 1.0)
    np.testing.assert_allclose(E_new[2], 0.25)
    np.testing.assert_array_equal(E_new[3:], E[3:])


def test_reestimate_zero_counts_give_zero_rows(motif_model):
    T = np.array(motif_model.transition)
    E = np.array(motif_model.emission)
    T_new, _ = reestimate(T, E, np.zeros_like(T), np.zeros_like(E), [3], [])
    assert T_new[3].sum() == 0
    np.testing.assert_array_equal(T_new[4:], T[4:])


def test_baum_welch_is_monotone(embedded, motif_model):
    collection, _ = embedded
    sequences = list(collection.sequences())[:20]
    T = np.array(motif_model.transition)
    E = np.array(motif_model.emission)
    rows = list(range(motif_model.n_states))
    emission_rows = rows[1:]
    previous = -np.inf
    for _ in range(5):
        log_lik, T, E = baum_welch_iteration(T, E, sequences, rows, emission_rows, 0.0, 0.0)
        assert log_lik >= previous - 1e-8
        previous = log_lik
    motif_model.set_parameters(T, E)
    assert motif_model.log_likelihood(sequences) >= previous - 1e-8


def test_viterbi_iteration_is_monotone(embedded, motif_model):
    collection, _ = embedded
    sequences = list(collection.sequences())[:20]
    T = np.array(motif_model.transition)
    E = np.array(motif_model.emission)
    rows = list(range(motif_model.n_states))
    previous = -np.inf
    for _ in range(3):
        log_p, T_new, E_new = viterbi_iteration(T, E, sequences, rows, rows[1:], 0.0, 0.0)
        assert log_p >= previous - 1e-8
        previous = log_p
        assert parameter_change(T, E, T_new, E_new) >= 0
        T, E = T_new, E_new
