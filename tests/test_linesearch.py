import numpy as np
import pytest

from motifhmm import HMMOptions, LineSearchOptions
from motifhmm.gradient import Gradient, compute_gradient
from motifhmm.linesearch import (
    _cubic_minimizer,
    _quadratic_minimizer,
    _quadratic_minimizer2,
    build_trial_model,
    line_search,
    line_search_more_thuente,
)
from motifhmm.measures import collection_score
from motifhmm.training import GRADIENT, Targets, Task


@pytest.fixture
def mi_task(motif_model):
    return Task("mi", [2], Targets([], motif_model.motif_states([2])), GRADIENT)


def test_interpolation_of_a_quadratic():
    # f(x) = (x - 1)^2 sampled at 0 and 3
    assert _cubic_minimizer(0.0, 1.0, -2.0, 3.0, 4.0, 4.0) == pytest.approx(1.0)
    assert _quadratic_minimizer(0.0, 1.0, -2.0, 3.0, 4.0) == pytest.approx(1.0)
    assert _quadratic_minimizer2(0.0, -2.0, 3.0, 4.0) == pytest.approx(1.0)


def test_build_trial_model(motif_model):
    rng = np.random.default_rng(3)
    direction = Gradient(rng.normal(size=(6, 6)), rng.normal(size=(6, 4)))
    same = build_trial_model(motif_model, direction, 0.0)
    np.testing.assert_allclose(same.transition, motif_model.transition)
    trial = build_trial_model(motif_model, direction, 0.5)
    np.testing.assert_array_equal(np.array(trial.transition) > 0, np.array(motif_model.transition) > 0)
    np.testing.assert_allclose(trial.transition.sum(1), 1.0)
    np.testing.assert_allclose(trial.emission[1:].sum(1), 1.0)
    assert not np.allclose(trial.emission, motif_model.emission)


@pytest.mark.parametrize("method", ["exponential", "more-thuente"])
def test_line_search_improves(motif_model, small_contrast, mi_task, method):
    options = HMMOptions(line_search=LineSearchOptions(method=method))
    T = np.array(motif_model.transition)
    E = np.array(motif_model.emission)
    score, gradient, class_params = compute_gradient(motif_model, small_contrast, mi_task, options)
    if method == "exponential":
        result, _ = line_search(motif_model, small_contrast, gradient, mi_task, options, score)
    else:
        result = line_search_more_thuente(motif_model, small_contrast, gradient, gradient, mi_task, options, score)
    assert result.improved
    assert result.score > score
    assert result.n_evaluations >= 1
    np.testing.assert_allclose(result.score, collection_score(result.model, small_contrast, "mi", [2], options))
    # the starting model is left unchanged
    np.testing.assert_array_equal(motif_model.transition, T)
    np.testing.assert_array_equal(motif_model.emission, E)


def test_exponential_center_moves(motif_model, small_contrast, mi_task):
    options = HMMOptions(line_search=LineSearchOptions(method="exponential", initial_step=1e-3))
    score, gradient, _ = compute_gradient(motif_model, small_contrast, mi_task, options)
    result, center = line_search(motif_model, small_contrast, gradient, mi_task, options, score)
    assert result.improved
    # a tiny initial step is doubled at least once
    assert center > 0


def test_line_search_zero_direction(motif_model, small_contrast, mi_task):
    options = HMMOptions()
    zero = Gradient.zeros(motif_model.n_states, 4)
    result, center = line_search(motif_model, small_contrast, zero, mi_task, options, 0.1, center=2)
    assert not result.improved and result.model is motif_model and center == 2
    result = line_search_more_thuente(motif_model, small_contrast, zero, zero, mi_task, options, 0.1)
    assert not result.improved and result.n_evaluations == 0
