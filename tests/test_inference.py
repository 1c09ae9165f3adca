import itertools

import numpy as np
import pytest

from motifhmm import ProfileHMM
from motifhmm.inference import (
    backward_counting,
    backward_prescaled,
    entry_mask,
    expected_posterior,
    forward_counting,
    forward_scale,
    forward_scaled,
    log_likelihood_from_scale,
    posterior_atleast_one,
    viterbi,
)
from motifhmm.utils import emission_lookup, encode


@pytest.fixture
def tiny_model():
    model = ProfileHMM()
    model.add_motif("ac", expected_length=4)
    return model


def enumerate_paths(model, x):
    """Yield every state path of positive probability with its probability."""
    T = np.array(model.transition)
    E_ext = model.emission_table()
    for path in itertools.product(range(1, model.n_states), repeat=len(x)):
        p = 1.0
        prev = 0
        for state, sym in zip(path, x):
            p *= T[prev, state] * E_ext[state, sym]
            prev = state
        if p > 0:
            yield path, p


def test_background_likelihood(bg_model):
    x = encode("acgtacgtnn")
    np.testing.assert_allclose(bg_model.log_likelihood(x), 8 * np.log(0.25))


def test_forward_backward_consistency(motif_model):
    x = encode("ttacgtacgtgcaacgt")
    T = np.array(motif_model.transition)
    E_ext = motif_model.emission_table()
    F, scale = forward_scaled(T, E_ext, x)
    B = backward_prescaled(T, E_ext, x, scale)
    np.testing.assert_allclose(F.sum(0), 1.0)
    np.testing.assert_allclose((F * B).sum(0), 1.0)
    np.testing.assert_allclose(forward_scale(T, E_ext, x), scale)


def test_likelihood_matches_path_sum(tiny_model):
    x = encode("cacg")
    total = sum(p for _, p in enumerate_paths(tiny_model, x))
    np.testing.assert_allclose(tiny_model.log_likelihood(x), np.log(total))


def test_viterbi_matches_best_path(tiny_model):
    x = encode("gacc")
    best_path, best_p = max(enumerate_paths(tiny_model, x), key=lambda item: item[1])
    path, log_p = tiny_model.viterbi(x)
    assert tuple(path) == best_path
    np.testing.assert_allclose(log_p, np.log(best_p))
    assert log_p <= tiny_model.log_likelihood(x)


def test_posterior_matches_path_sum(tiny_model):
    x = encode("acta")
    paths = list(enumerate_paths(tiny_model, x))
    total = sum(p for _, p in paths)
    with_motif = sum(p for path, p in paths if any(s in (2, 3) for s in path))
    log_lik, posterior = tiny_model.posterior_atleast_one(x, [2])
    np.testing.assert_allclose(log_lik, np.log(total))
    np.testing.assert_allclose(posterior, with_motif / total)
    assert 0.0 <= posterior <= 1.0


def test_expected_sites_matches_path_sum(tiny_model):
    x = encode("acac")
    expected = 0.0
    total = 0.0
    for path, p in enumerate_paths(tiny_model, x):
        entries = tiny_model.count_motif(np.array(path), 2)
        expected += p * entries
        total += p
    np.testing.assert_allclose(tiny_model.expected_posterior(x, [2]), expected / total)


def test_expected_sites_count_back_to_back_occurrences():
    model = ProfileHMM()
    model.add_motif("gattac", expected_length=100)
    x = encode("ccccgattacgattaccccc")
    path, _ = model.viterbi(x)
    assert model.count_motif(path, 2) == 2
    np.testing.assert_allclose(model.expected_posterior(x, [2]), 2.0, atol=0.15)


def test_expected_sites_bound_posterior(motif_model):
    x = encode("acgtacgtttacgaacgt")
    _, posterior = motif_model.posterior_atleast_one(x, [2])
    sites = motif_model.expected_posterior(x, [2])
    assert sites >= posterior


def test_pair_posteriors(two_motif_model):
    x = encode("aacgtttgcaggttgca")
    _, first, second, both, none = two_motif_model.pair_posterior_atleast_one(x, [2], [3])
    _, p2 = two_motif_model.posterior_atleast_one(x, [2])
    _, p3 = two_motif_model.posterior_atleast_one(x, [3])
    np.testing.assert_allclose(first, p2)
    np.testing.assert_allclose(second, p3)
    np.testing.assert_allclose(first + second - both + none, 1.0)
    assert 0.0 <= both <= min(first, second) + 1e-12


def test_impossible_sequence():
    model = ProfileHMM()
    model.add_motif("a", expected_length=10)
    T = np.array(model.transition)
    E = np.zeros((3, 4))
    E[1, 0] = 1.0
    E[2, 0] = 1.0
    E_ext = emission_lookup(E)
    x = encode("ac")
    _, scale = forward_scaled(T, E_ext, x)
    assert log_likelihood_from_scale(scale) == -np.inf
    _, posterior = posterior_atleast_one(T, E_ext, x, [2])
    assert posterior == 0.0
    assert expected_posterior(T, E_ext, x, [2]) == 0.0
    _, log_p = viterbi(T, E_ext, x)
    assert log_p == -np.inf


def test_empty_sequence(motif_model):
    x = encode("")
    assert motif_model.log_likelihood(x) == 0.0
    path, log_p = motif_model.viterbi(x)
    assert len(path) == 0 and log_p == 0.0


def test_counting_messages_agree(motif_model):
    x = encode("ggacgtacgtcc")
    T = np.array(motif_model.transition)
    E_ext = motif_model.emission_table()
    F, scale = forward_scaled(T, E_ext, x)
    B = backward_prescaled(T, E_ext, x, scale)
    entry = entry_mask(T.shape[0], [2, 3, 4, 5])
    F1 = forward_counting(T, E_ext, x, scale, entry, F)
    B1 = backward_counting(T, E_ext, x, scale, entry, B)
    # expected count from the forward pass equals that from the backward pass
    np.testing.assert_allclose(F1[:, -1].sum(), B1[0, 0])
