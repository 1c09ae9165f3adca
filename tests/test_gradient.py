import numpy as np
import pytest

from motifhmm import HMMOptions
from motifhmm.exceptions import GradientNotImplementedError
from motifhmm.gradient import Gradient, compute_gradient, norm, scalar_product, transform_counts
from motifhmm.linesearch import build_trial_model
from motifhmm.measures import collection_score
from motifhmm.training import GRADIENT, Targets, Task


def full_task(model, measure):
    rows = list(range(model.n_states))
    return Task(measure, model.motif_groups(), Targets(rows, rows[1:]), GRADIENT)


def directional_derivative(model, collection, task, options, direction, class_params, h=1e-4):
    def score(step):
        trial = build_trial_model(model, direction, step)
        return collection_score(trial, collection, task.measure, task.motifs, options, class_params)

    return (score(h) - score(-h)) / (2 * h)


def test_gradient_arithmetic():
    a = Gradient(np.ones((2, 2)), np.ones((2, 4)))
    b = Gradient.zeros(2, 4)
    b.add_scaled(a, 3.0)
    np.testing.assert_array_equal((b - a).transition, 2.0)
    np.testing.assert_array_equal((2 * a + -a).emission, 1.0)
    assert scalar_product(a, a) == 12.0
    np.testing.assert_allclose(norm(a), np.sqrt(12.0))
    restricted = a.restrict([1], [0])
    assert restricted.transition.sum() == 2.0 and restricted.emission.sum() == 4.0
    assert a.is_finite()


def test_transform_counts_sums_to_zero(motif_model):
    T = np.array(motif_model.transition)
    E = np.array(motif_model.emission)
    rng = np.random.default_rng(1)
    g = transform_counts(T, E, rng.uniform(size=T.shape) * (T > 0), rng.uniform(size=E.shape))
    # moving along the softmax coordinates can not change row sums
    np.testing.assert_allclose(g.transition.sum(1), 0.0, atol=1e-12)
    np.testing.assert_allclose(g.emission[1:].sum(1), 0.0, atol=1e-12)


@pytest.mark.parametrize("measure", ["mi", "ri", "mcc", "dlogl", "dips", "dipss", "mmie", "bw", "viterbi"])
def test_gradient_matches_finite_differences(motif_model, small_contrast, measure):
    options = HMMOptions()
    task = full_task(motif_model, measure)
    _, gradient, class_params = compute_gradient(motif_model, small_contrast, task, options)
    direction = gradient * (1.0 / norm(gradient))
    numeric = directional_derivative(motif_model, small_contrast, task, options, direction, class_params)
    analytic = scalar_product(direction, gradient)
    np.testing.assert_allclose(analytic, numeric, rtol=1e-3, atol=1e-7)


def test_gradient_with_insertions(insertion_model, small_contrast):
    options = HMMOptions()
    task = full_task(insertion_model, "mi")
    _, gradient, _ = compute_gradient(insertion_model, small_contrast, task, options)
    direction = gradient * (1.0 / norm(gradient))
    numeric = directional_derivative(insertion_model, small_contrast, task, options, direction, None)
    np.testing.assert_allclose(scalar_product(direction, gradient), numeric, rtol=1e-3, atol=1e-7)


def test_gradient_is_restricted_to_targets(motif_model, small_contrast):
    options = HMMOptions()
    task = Task("mi", [2], Targets([], [2, 3]), GRADIENT)
    score, gradient, _ = compute_gradient(motif_model, small_contrast, task, options)
    assert np.all(gradient.transition == 0)
    assert np.all(gradient.emission[[0, 1, 4, 5]] == 0)
    assert np.any(gradient.emission[[2, 3]] != 0)
    np.testing.assert_allclose(score, collection_score(motif_model, small_contrast, "mi", [2], options))


def test_gradient_zero_outside_support(insertion_model, small_contrast):
    task = full_task(insertion_model, "dips")
    _, gradient, _ = compute_gradient(insertion_model, small_contrast, task, HMMOptions())
    assert np.all(gradient.transition[np.array(insertion_model.transition) == 0] == 0)


def test_no_gradient_for_cmi(two_motif_model, small_contrast):
    task = full_task(two_motif_model, "cmi")
    with pytest.raises(GradientNotImplementedError):
        compute_gradient(two_motif_model, small_contrast, task, HMMOptions())
