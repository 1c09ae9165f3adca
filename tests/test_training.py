import logging

import numpy as np
import pytest

from motifhmm import Collection, HMMOptions, LineSearchOptions, SamplingOptions, TerminationOptions, training
from motifhmm.exceptions import CalculationInfinityError, GradientNotImplementedError, MultipleTasksError
from motifhmm.sampling import SamplingResult
from motifhmm.training import (
    GRADIENT,
    REESTIMATION,
    Objective,
    Targets,
    Task,
    TrainingState,
    check_termination,
    compute_score,
    compute_score_all_motifs,
    define_training_tasks,
    train,
)


def test_objective_parsing():
    assert Objective.parse("MI") == Objective("mi", [])
    assert Objective.parse("dips:acgt, ggg") == Objective("dips", ["acgt", "ggg"])
    with pytest.raises(AssertionError):
        Objective.parse("unknown")


def test_tasks_em_background(motif_model):
    tasks = define_training_tasks(motif_model, HMMOptions(objectives=["mi"], bg_learning="em"))
    assert [t.method for t in tasks] == [GRADIENT, REESTIMATION]
    assert tasks[0].motifs == [2]
    assert tasks[0].targets.transition == []
    assert tasks[0].targets.emission == [2, 3, 4, 5]
    assert tasks[1].measure == "bw"
    assert tasks[1].targets.transition == list(range(6))
    assert tasks[1].targets.emission == [1]


def test_tasks_gradient_background(motif_model):
    tasks = define_training_tasks(motif_model, HMMOptions(objectives=["mi"], bg_learning="gradient"))
    assert len(tasks) == 1
    assert tasks[0].targets.transition == list(range(6))
    assert tasks[0].targets.emission == [1, 2, 3, 4, 5]


def test_tasks_fixed_background(motif_model):
    tasks = define_training_tasks(motif_model, HMMOptions(objectives=["mi"], bg_learning="fixed"))
    assert len(tasks) == 1
    assert tasks[0].targets.transition == []


def test_tasks_generative(motif_model):
    tasks = define_training_tasks(motif_model, HMMOptions(objectives=["viterbi"]))
    assert len(tasks) == 1
    assert tasks[0].method == REESTIMATION
    assert tasks[0].targets.emission == [1, 2, 3, 4, 5]


def test_tasks_per_motif(two_motif_model):
    options = HMMOptions(objectives=["mi:aacg", "mcc:ttgca"], bg_learning="fixed")
    tasks = define_training_tasks(two_motif_model, options)
    assert [t.motifs for t in tasks] == [[2], [3]]
    assert tasks[1].targets.emission == [6, 7, 8, 9, 10, 11]
    with pytest.raises(ValueError):
        define_training_tasks(two_motif_model, HMMOptions(objectives=["mi:nope"]))


def test_overlapping_tasks(motif_model):
    with pytest.raises(MultipleTasksError):
        define_training_tasks(motif_model, HMMOptions(objectives=["mi", "mcc"]))


def test_cmi_is_not_trainable(motif_model):
    with pytest.raises(GradientNotImplementedError):
        define_training_tasks(motif_model, HMMOptions(objectives=["cmi"]))


class TestTermination:
    def test_max_iter(self):
        options = HMMOptions(termination=TerminationOptions(max_iter=2))
        state = TrainingState(iteration=2, scores=[1.0, 2.0])
        assert "maximum" in check_termination(state, options, None, None)

    def test_unlimited_iterations(self):
        options = HMMOptions(termination=TerminationOptions(max_iter=0, delta_tolerance=0.0))
        state = TrainingState(iteration=10000, scores=[1.0, 2.0])
        assert check_termination(state, options, None, None) is None

    def test_gamma(self):
        options = HMMOptions(termination=TerminationOptions(gamma_tolerance=1e-3))
        state = TrainingState(iteration=1, scores=[1.0])
        assert "gamma" in check_termination(state, options, 1e-4, None)
        assert check_termination(state, options, 1e-2, None) is None

    def test_relative_delta_over_past(self):
        options = HMMOptions(termination=TerminationOptions(delta_tolerance=0.01, past=2))
        state = TrainingState(iteration=3, scores=[100.0, 100.5, 100.6])
        assert "relative" in check_termination(state, options, None, None)
        state = TrainingState(iteration=3, scores=[90.0, 100.5, 100.6])
        assert check_termination(state, options, None, None) is None

    def test_absolute_delta(self):
        options = HMMOptions(termination=TerminationOptions(delta_tolerance=0.01, absolute_improvement=True))
        state = TrainingState(iteration=2, scores=[100.0, 100.5])
        assert check_termination(state, options, None, None) is None
        state = TrainingState(iteration=2, scores=[100.0, 100.001])
        assert "absolute" in check_termination(state, options, None, None)

    def test_score_drop_terminates(self):
        options = HMMOptions(termination=TerminationOptions(delta_tolerance=0.01))
        state = TrainingState(iteration=2, scores=[100.0, 50.0])
        assert "relative" in check_termination(state, options, None, None)
        state = TrainingState(iteration=2, scores=[-100.0, -50.0])
        assert check_termination(state, options, None, None) is None
        options = HMMOptions(termination=TerminationOptions(delta_tolerance=-np.inf))
        state = TrainingState(iteration=2, scores=[100.0, 50.0])
        assert check_termination(state, options, None, None) is None

    def test_epsilon(self):
        options = HMMOptions(termination=TerminationOptions(epsilon_tolerance=0.5, delta_tolerance=0.0))
        state = TrainingState(iteration=1, scores=[1.0])
        assert "epsilon" in check_termination(state, options, None, 0.1)
        options = HMMOptions(termination=TerminationOptions(epsilon_tolerance=0.0, delta_tolerance=0.0))
        assert check_termination(state, options, None, 0.1) is None


@pytest.mark.parametrize("method", ["exponential", "more-thuente"])
def test_discriminative_training_improves(motif_model, small_contrast, method):
    options = HMMOptions(
        objectives=["mi"],
        bg_learning="fixed",
        termination=TerminationOptions(max_iter=3, delta_tolerance=0.0),
        line_search=LineSearchOptions(method=method),
    )
    initial = compute_score(motif_model, small_contrast, "mi", options, [2])
    result = train(motif_model, small_contrast, options, progress=False)
    assert result.iterations <= 3
    assert result.score > initial
    assert all(b >= a for a, b in zip(result.scores, result.scores[1:]))
    np.testing.assert_allclose(result.score, compute_score_all_motifs(result.model, small_contrast, "mi", options))
    assert result.model.check_consistency()
    # the input model is not modified
    np.testing.assert_allclose(motif_model.transition[1, 2], 0.02)


def test_training_with_background_em(motif_model, small_contrast):
    options = HMMOptions(
        objectives=["dips"],
        bg_learning="em",
        termination=TerminationOptions(max_iter=2, delta_tolerance=0.0),
    )
    result = train(motif_model, small_contrast, options, progress=False)
    assert result.iterations == 2
    assert result.model.check_consistency()
    assert not np.allclose(result.model.emission[1], motif_model.emission[1])


def test_baum_welch_training_stops_on_gamma(motif_model, small_contrast):
    options = HMMOptions(
        objectives=["bw"],
        emission_pseudo_count=0.0,
        termination=TerminationOptions(max_iter=500, gamma_tolerance=0.05, delta_tolerance=0.0),
    )
    result = train(motif_model, small_contrast, options, progress=False)
    assert "gamma" in result.reason
    assert all(b >= a - 1e-6 for a, b in zip(result.scores, result.scores[1:]))


def test_train_background_first(motif_model, small_contrast):
    options = HMMOptions(
        objectives=["mi"],
        bg_learning="fixed",
        train_background_first=True,
        termination=TerminationOptions(max_iter=1, delta_tolerance=0.0),
    )
    result = train(motif_model, small_contrast, options, progress=False)
    assert not np.allclose(result.model.emission[1], 0.25)


def test_train_with_sampling(motif_model, small_contrast):
    options = HMMOptions(
        objectives=["mi"],
        bg_learning="fixed",
        random_salt=11,
        termination=TerminationOptions(max_iter=2, delta_tolerance=0.0),
        sampling=SamplingOptions(do_sampling=True, n_parallel=2, min_size=3, max_size=6),
    )
    result = train(motif_model, small_contrast, options, progress=False)
    assert 3 <= result.model.motif_length(2) <= 6
    assert result.model.check_consistency()


def test_compute_score_rejects_infinite_scores(motif_model):
    emission = np.array(motif_model.emission)
    emission[1:] = [0.5, 0.5, 0.0, 0.0]
    motif_model.set_parameters(motif_model.transition, emission)
    collection = Collection.from_strings(["ggtt", "acgg"], ["acac"])
    with pytest.raises(CalculationInfinityError):
        compute_score(motif_model, collection, "dlogl", HMMOptions(), [2])


def test_given_tasks_kept_when_sampling_keeps_structure(monkeypatch, motif_model, small_contrast):
    options = HMMOptions(
        objectives=["mi"],
        bg_learning="fixed",
        random_salt=3,
        termination=TerminationOptions(max_iter=1),
        sampling=SamplingOptions(do_sampling=True, n_parallel=2, min_size=4, max_size=4, n_shift=0),
    )
    task = Task("dips", [2], Targets([], [2, 3, 4, 5]), GRADIENT)

    def fail(*args, **kwargs):
        raise AssertionError("tasks were re-derived")

    monkeypatch.setattr(training, "define_training_tasks", fail)
    result = train(motif_model, small_contrast, options, tasks=[task], progress=False)
    assert result.model.groups == motif_model.groups


def test_given_tasks_replaced_when_sampling_grows_motif(monkeypatch, caplog, motif_model, small_contrast):
    options = HMMOptions(
        objectives=["mi"],
        bg_learning="fixed",
        termination=TerminationOptions(max_iter=1),
        sampling=SamplingOptions(do_sampling=True),
    )
    task = Task("dips", [2], Targets([], [2, 3, 4, 5]), GRADIENT)

    def grow(model, collection, task, options, progress):
        bigger = model.clone()
        bigger.add_columns(1, np.random.default_rng(0), 2)
        return SamplingResult([], [], bigger, 0.0, [])

    monkeypatch.setattr(training, "mcmc", grow)
    with caplog.at_level(logging.WARNING, logger="motifhmm.training"):
        result = train(motif_model, small_contrast, options, tasks=[task], progress=False)
    assert "replacing the given tasks" in caplog.text
    assert result.model.motif_length(2) == 5
