"""Training driver: task definition, generative and gradient iterations, termination."""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field

import numpy as np
from tqdm import tqdm

from .exceptions import CalculationInfinityError, MultipleTasksError
from .gradient import compute_gradient, norm, scalar_product
from .learning import baum_welch_iteration, parameter_change, viterbi_iteration
from .linesearch import line_search, line_search_more_thuente
from .measures import (
    check_measure,
    collection_score,
    is_generative,
    require_gradient,
)
from .model import BG_STATE, START_STATE
from .sampling import mcmc

logger = logging.getLogger(__name__)

REESTIMATION = "reestimation"
GRADIENT = "gradient"


@dataclass
class Objective:
    """A measure and the motifs it is evaluated for; no motifs means all motifs."""

    measure: str
    motifs: list[str] = field(default_factory=list)

    @classmethod
    def parse(cls, spec: str) -> Objective:
        """Parse "measure" or "measure:motif1,motif2"."""
        measure, _, motifs = spec.partition(":")
        measure = measure.strip().lower()
        check_measure(measure)
        return cls(measure, [m.strip() for m in motifs.split(",") if m.strip()])


@dataclass
class Targets:
    """States whose outgoing transitions and emissions a task trains."""

    transition: list[int] = field(default_factory=list)
    emission: list[int] = field(default_factory=list)


@dataclass
class Task:
    """One training task.

    Attributes
    ----------
    measure : str
        Measure tag
    motifs : list of int
        Motif groups whose occurrence the measure evaluates
    targets : Targets
        Trained parameters
    method : str
        "reestimation" or "gradient"
    """

    measure: str
    motifs: list[int]
    targets: Targets
    method: str

    def __str__(self) -> str:
        return (
            f"{self.method} of {self.measure} for motifs {self.motifs}: "
            f"transitions {self.targets.transition}, emissions {self.targets.emission}"
        )


def _resolve_motifs(model, names) -> list[int]:
    motifs = model.motif_groups()
    if not names:
        return motifs
    by_name = {model.group_name(i): i for i in motifs}
    missing = [n for n in names if n not in by_name]
    if missing:
        raise ValueError(f"Unknown motif names in objective: {missing}")
    return [by_name[n] for n in names]


def define_training_tasks(model, options) -> list[Task]:
    """Prepare training tasks according to the objectives and background learning mode.

    A generative objective becomes one re-estimation task; a discriminative objective
    becomes a gradient task on the emissions of its motifs. The background emissions
    and all transitions are added according to ``bg_learning``: to a Baum-Welch
    re-estimation task ("em"), to the first gradient task ("gradient"), or not at
    all ("fixed").

    Raises
    ------
    MultipleTasksError
        If two tasks target the same parameters
    """
    objectives = [Objective.parse(o) if isinstance(o, str) else o for o in options.objectives]
    all_transitions = list(range(model.n_states))
    bg_rows = Targets(all_transitions, [BG_STATE])
    tasks = []
    for objective in objectives:
        motifs = _resolve_motifs(model, objective.motifs)
        emission_rows = model.motif_states(motifs)
        if is_generative(objective.measure):
            targets = Targets(model.motif_states(motifs), emission_rows)
            if options.bg_learning != "fixed":
                targets = Targets(all_transitions, [BG_STATE] + emission_rows)
            tasks.append(Task(objective.measure, motifs, targets, REESTIMATION))
        else:
            require_gradient(objective.measure)
            tasks.append(Task(objective.measure, motifs, Targets([], emission_rows), GRADIENT))

    covered = any(t.method == REESTIMATION and BG_STATE in t.targets.emission for t in tasks)
    if options.bg_learning == "em" and not covered:
        tasks.append(Task("bw", [], bg_rows, REESTIMATION))
    elif options.bg_learning == "gradient" and not covered:
        gradient_tasks = [t for t in tasks if t.method == GRADIENT]
        if gradient_tasks:
            first = gradient_tasks[0]
            first.targets = Targets(all_transitions, [BG_STATE] + first.targets.emission)
        else:
            tasks.append(Task("bw", [], bg_rows, GRADIENT))

    for kind in ("transition", "emission"):
        seen = set()
        for task in tasks:
            rows = set(getattr(task.targets, kind))
            overlap = seen & rows
            if overlap:
                raise MultipleTasksError(f"{kind} rows {sorted(overlap)}")
            seen |= rows
    for task in tasks:
        logger.info(f"Training task: {task}")
    return tasks


@dataclass
class TrainingState:
    """Bookkeeping across training iterations."""

    iteration: int = 0
    scores: list[float] = field(default_factory=list)
    centers: dict = field(default_factory=dict)
    prev_gradient: dict = field(default_factory=dict)
    prev_direction: dict = field(default_factory=dict)
    cg_iterations: dict = field(default_factory=dict)


@dataclass
class TrainingResult:
    """Outcome of training.

    Attributes
    ----------
    model : ProfileHMM
        The trained model
    score : float
        Sum of the task scores in the last iteration
    scores : list of float
        Score history, one entry per iteration
    iterations : int
    reason : str
        Why training terminated
    """

    model: object
    score: float
    scores: list
    iterations: int
    reason: str


def reestimation_iteration(model, collection, task, options):
    """One generative iteration; returns the score and the L1 parameter change."""
    learn = baum_welch_iteration if task.measure == "bw" else viterbi_iteration
    T = np.array(model.transition, dtype=np.float64)
    E = np.array(model.emission, dtype=np.float64)
    score, T_new, E_new = learn(
        T,
        E,
        list(collection.sequences()),
        task.targets.transition,
        task.targets.emission,
        options.transition_pseudo_count,
        options.emission_pseudo_count,
        options.n_threads,
    )
    model.set_parameters(T_new, E_new)
    return score, parameter_change(T, E, model.transition, model.emission)


def gradient_iteration(model, collection, task, options, state: TrainingState, key):
    """One gradient iteration with optional Polak-Ribière conjugate directions.

    Returns
    -------
    model : ProfileHMM
        The accepted model, or the unchanged input model
    score : float
    improved : bool
    gradient_norm : float
    """
    ls = options.line_search
    score, gradient, class_params = compute_gradient(model, collection, task, options)
    direction = gradient
    prev_g = state.prev_gradient.get(key)
    prev_d = state.prev_direction.get(key)
    n_cg = state.cg_iterations.get(key, 0)
    if ls.conjugate_gradient and prev_g is not None and n_cg < ls.cg_restart:
        denom = scalar_product(prev_g, prev_g)
        beta = max(0.0, scalar_product(gradient, gradient - prev_g) / denom) if denom > 0 else 0.0
        direction = gradient + beta * prev_d
        if scalar_product(direction, gradient) <= 0:
            logger.debug("Conjugate direction is not an ascent direction; restarting")
            direction = gradient
            n_cg = 0
        else:
            n_cg += 1
    else:
        n_cg = 0

    if ls.method == "exponential":
        result, state.centers[key] = line_search(
            model, collection, direction, task, options, score, state.centers.get(key, 0), class_params
        )
    else:
        result = line_search_more_thuente(model, collection, direction, gradient, task, options, score, class_params)

    state.prev_gradient[key] = gradient
    state.prev_direction[key] = direction
    state.cg_iterations[key] = n_cg
    if not result.improved:
        logger.info(f"Line search for {task.measure} found no improvement after {result.n_evaluations} evaluations")
        state.prev_gradient.pop(key)
        state.prev_direction.pop(key)
        return model, score, False, norm(gradient)
    return result.model, result.score, True, norm(gradient)


def check_termination(state: TrainingState, options, change: float | None, gradient_norm: float | None) -> str | None:
    """Return the reason for termination, or None to continue."""
    term = options.termination
    if term.max_iter and state.iteration >= term.max_iter:
        return "maximum number of iterations reached"
    if change is not None and change < term.gamma_tolerance:
        return f"parameter change {change:.3g} below gamma tolerance"
    if len(state.scores) > term.past:
        current = state.scores[-1]
        past = state.scores[-1 - term.past]
        diff = current - past
        if not term.absolute_improvement:
            diff /= max(abs(current), np.finfo(float).tiny)
        if diff < term.delta_tolerance:
            kind = "absolute" if term.absolute_improvement else "relative"
            return f"{kind} score improvement {diff:.3g} below delta tolerance"
    if gradient_norm is not None and gradient_norm < term.epsilon_tolerance * max(1.0, gradient_norm):
        return "gradient norm below epsilon tolerance"
    return None


def iterative_training(model, collection, tasks, options, progress: bool = True) -> TrainingResult:
    """Train the model in place by iterating over all tasks until termination.

    A full iteration over all tasks always completes before termination is evaluated.
    """
    state = TrainingState()
    max_iter = options.termination.max_iter
    iterations = range(max_iter) if max_iter else itertools.count()
    pbar = tqdm(iterations, total=max_iter or None, position=0, disable=not progress)
    reason = "no iterations performed"
    for _ in pbar:
        total = 0.0
        change = 0.0 if all(t.method == REESTIMATION for t in tasks) else None
        gradient_norm = None
        improved = []
        for key, task in enumerate(tasks):
            if task.method == REESTIMATION:
                score, delta = reestimation_iteration(model, collection, task, options)
                if change is not None:
                    change += delta
                improved.append(True)
            else:
                new_model, score, ok, g_norm = gradient_iteration(model, collection, task, options, state, key)
                if ok:
                    model.set_parameters(new_model.transition, new_model.emission)
                improved.append(ok)
                gradient_norm = g_norm if gradient_norm is None else max(gradient_norm, g_norm)
            total += score
        state.iteration += 1
        state.scores.append(total)
        pbar.set_postfix(score=total)
        logger.info(f"Iteration {state.iteration}: score {total:.6g}")

        if not any(improved):
            reason = "no improvement"
            break
        reason = check_termination(state, options, change, gradient_norm)
        if reason is not None:
            break
    logger.info(f"Training terminated after {state.iteration} iterations: {reason}")
    score = state.scores[-1] if state.scores else float("nan")
    return TrainingResult(model, score, state.scores, state.iteration, reason)


def initialize_bg_with_bw(model, collection, options, progress: bool = True):
    """Train only the background emissions and the start and background transitions.

    Returns a new model; the input model is not modified.
    """
    model = model.clone()
    task = Task("bw", [], Targets([START_STATE, BG_STATE], [BG_STATE]), REESTIMATION)
    logger.info("Initializing background with Baum-Welch")
    iterative_training(model, collection, [task], options, progress)
    return model


def train(model, collection, options, tasks=None, progress: bool = True) -> TrainingResult:
    """Train a copy of the model on a collection.

    Parameters
    ----------
    model : ProfileHMM
        Initial model; not modified
    collection : Collection
    options : HMMOptions
    tasks : list of Task, optional
        Defaults to :func:`define_training_tasks`
    progress : bool, default=True
        Show progress bars

    Returns
    -------
    result : TrainingResult
    """
    model = model.clone()
    if options.train_background_first:
        model = initialize_bg_with_bw(model, collection, options, progress)
    given_tasks = tasks is not None
    if not given_tasks:
        tasks = define_training_tasks(model, options)
    if options.sampling.do_sampling:
        sampled = mcmc(model, collection, tasks[0], options, progress)
        logger.info(f"Best sampled model scores {sampled.best_score:.6g}")
        if sampled.best_model.groups != model.groups:
            # state indices changed
            if given_tasks:
                logger.warning("Sampling changed the motif structure; replacing the given tasks by the objectives")
            tasks = define_training_tasks(sampled.best_model, options)
        model = sampled.best_model
    return iterative_training(model, collection, tasks, options, progress)


def compute_score(model, collection, measure, options, present, previous=()) -> float:
    """Score of a measure for the given present (and previous) motif groups.

    This is the entry point for external seed selection.

    Raises
    ------
    CalculationInfinityError
        If the score is not finite
    """
    score = collection_score(model, collection, measure, present, options, previous=previous)
    if not np.isfinite(score):
        raise CalculationInfinityError("score")
    return score


def compute_score_all_motifs(model, collection, measure, options) -> float:
    return compute_score(model, collection, measure, options, model.motif_groups())
