"""Analytic gradients of the objective functions.

Parameters are reparameterized per row by a softmax over the structurally nonzero
entries, ``P_ij = exp(theta_ij) / sum_k exp(theta_ik)``. For expected counts ``C`` of
a log-probability this gives ``d/d theta_ij = C_ij - P_ij * sum_k C_ik``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from .exceptions import CalculationInfinityError
from .inference import (
    backward_counting,
    backward_prescaled,
    entry_mask,
    forward_counting,
    forward_scaled,
    log_likelihood_from_scale,
    restrict_transitions,
    viterbi,
)
from .learning import update_counts, update_counts_counting, update_counts_viterbi
from .measures import STATISTIC, contrast_factors, contrast_score, estimate_class_parameters, require_gradient
from .utils import SUPPORT, emission_lookup, parallel_map

logger = logging.getLogger(__name__)


@dataclass
class Gradient:
    """Gradient with respect to the reparameterized transition and emission matrices."""

    transition: np.ndarray
    emission: np.ndarray

    @classmethod
    def zeros(cls, n_states: int, n_emissions: int) -> Gradient:
        return cls(np.zeros((n_states, n_states)), np.zeros((n_states, n_emissions)))

    def __add__(self, other: Gradient) -> Gradient:
        return Gradient(self.transition + other.transition, self.emission + other.emission)

    def __sub__(self, other: Gradient) -> Gradient:
        return Gradient(self.transition - other.transition, self.emission - other.emission)

    def __mul__(self, factor: float) -> Gradient:
        return Gradient(self.transition * factor, self.emission * factor)

    __rmul__ = __mul__

    def __neg__(self) -> Gradient:
        return self * -1.0

    def add_scaled(self, other: Gradient, factor: float) -> None:
        """In-place ``self += factor * other``."""
        self.transition += factor * other.transition
        self.emission += factor * other.emission

    def restrict(self, transition_rows, emission_rows) -> Gradient:
        """Zero all rows except the targeted ones."""
        transition = np.zeros_like(self.transition)
        emission = np.zeros_like(self.emission)
        rows = list(transition_rows)
        transition[rows] = self.transition[rows]
        rows = list(emission_rows)
        emission[rows] = self.emission[rows]
        return Gradient(transition, emission)

    def is_finite(self) -> bool:
        return bool(np.all(np.isfinite(self.transition)) and np.all(np.isfinite(self.emission)))


def scalar_product(a: Gradient, b: Gradient) -> float:
    return float((a.transition * b.transition).sum() + (a.emission * b.emission).sum())


def norm(g: Gradient) -> float:
    return float(np.sqrt(scalar_product(g, g)))


def transform_counts(T, E, C_T, C_E) -> Gradient:
    """Chain expected counts through the softmax reparameterization."""
    return Gradient(
        C_T - T * C_T.sum(1, keepdims=True),
        C_E - E * C_E.sum(1, keepdims=True),
    )


def _counts(T_eval, E, E_ext, x, F, B, scale):
    C_T = np.zeros_like(T_eval)
    C_E = np.zeros_like(E)
    update_counts(C_T, C_E, T_eval, E, E_ext, SUPPORT, x, F, B, scale, 1.0)
    return C_T, C_E


def log_likelihood_gradient(T, E, E_ext, x):
    """Log-likelihood of a sequence and its gradient."""
    F, scale = forward_scaled(T, E_ext, x)
    log_lik = log_likelihood_from_scale(scale)
    if log_lik == -np.inf:
        return log_lik, Gradient.zeros(T.shape[0], E.shape[1])
    B = backward_prescaled(T, E_ext, x, scale)
    C_T, C_E = _counts(T, E, E_ext, x, F, B, scale)
    return log_lik, transform_counts(T, E, C_T, C_E)


def viterbi_gradient(T, E, E_ext, x):
    """Viterbi log probability of a sequence and the gradient for its fixed best path."""
    path, log_p = viterbi(T, E_ext, x)
    C_T = np.zeros_like(T)
    C_E = np.zeros_like(E)
    if log_p > -np.inf:
        update_counts_viterbi(C_T, C_E, E, E_ext, SUPPORT, x, path, 1.0)
    return log_p, transform_counts(T, E, C_T, C_E)


def posterior_gradient(T, E, E_ext, x, states):
    """Posterior of at least one visit to the given states and its gradient.

    With ``g`` the gradient of log P(s) and ``g_avoid`` that of the probability of the
    paths avoiding the states, the posterior ``p = 1 - P_avoid / P`` has gradient
    ``-(1 - p) * (g_avoid - g)``.

    Returns
    -------
    log_lik : float
    posterior : float
    gradient : Gradient
    """
    F, scale = forward_scaled(T, E_ext, x)
    log_lik = log_likelihood_from_scale(scale)
    zero = Gradient.zeros(T.shape[0], E.shape[1])
    if log_lik == -np.inf:
        return log_lik, 0.0, zero
    T_r = restrict_transitions(T, states)
    F_r, scale_r = forward_scaled(T_r, E_ext, x)
    log_avoid = log_likelihood_from_scale(scale_r)
    if log_avoid == -np.inf:
        return log_lik, 1.0, zero
    avoid = float(np.exp(log_avoid - log_lik))
    B = backward_prescaled(T, E_ext, x, scale)
    B_r = backward_prescaled(T_r, E_ext, x, scale_r)
    C_T, C_E = _counts(T, E, E_ext, x, F, B, scale)
    R_T, R_E = _counts(T_r, E, E_ext, x, F_r, B_r, scale_r)
    return log_lik, 1.0 - avoid, avoid * transform_counts(T, E, C_T - R_T, C_E - R_E)


def sites_gradient(T, E, E_ext, x, states, restarts=()):
    """Expected number of occurrences of the given states and its gradient.

    The gradient is the covariance of the occurrence count with the sufficient
    statistics, obtained from the expectation-semiring forward-backward pass.
    """
    F, scale = forward_scaled(T, E_ext, x)
    zero = Gradient.zeros(T.shape[0], E.shape[1])
    if log_likelihood_from_scale(scale) == -np.inf:
        return 0.0, zero
    B = backward_prescaled(T, E_ext, x, scale)
    entry = entry_mask(T.shape[0], states, restarts)
    F1 = forward_counting(T, E_ext, x, scale, entry, F)
    B1 = backward_counting(T, E_ext, x, scale, entry, B)
    n = float(F1[:, -1].sum())
    C_T, C_E = _counts(T, E, E_ext, x, F, B, scale)
    C2_T = np.zeros_like(T)
    C2_E = np.zeros_like(E)
    update_counts_counting(C2_T, C2_E, T, E, E_ext, SUPPORT, x, F, B, F1, B1, entry, scale)
    return n, transform_counts(T, E, C2_T - n * C_T, C2_E - n * C_E)


def sequence_gradient(statistic, T, E, E_ext, x, states, restarts=()):
    """Per-sequence statistic and its gradient."""
    if statistic == "log_likelihood":
        return log_likelihood_gradient(T, E, E_ext, x)
    if statistic == "viterbi":
        return viterbi_gradient(T, E, E_ext, x)
    if statistic == "posterior":
        _, p, g = posterior_gradient(T, E, E_ext, x, states)
        return p, g
    if statistic == "sites":
        return sites_gradient(T, E, E_ext, x, states, restarts)
    raise ValueError(f"No gradient for statistic {statistic}")


def contrast_gradient(model, contrast, measure, present, options, class_params=None):
    """Score and gradient of one contrast.

    Returns
    -------
    score : float
    gradient : Gradient
    class_params : ClassParameters or None
        The class likelihood parameters used, for measure "mmie"
    """
    statistic = STATISTIC[measure]
    T = np.array(model.transition, dtype=np.float64)
    E = np.array(model.emission, dtype=np.float64)
    E_ext = emission_lookup(E)
    states = model.motif_states(present)
    restarts = model.motif_restarts(present)

    stats, grads, weights, is_signal = [], [], [], []
    for seqset in contrast:
        results = parallel_map(
            lambda s: sequence_gradient(statistic, T, E, E_ext, s.codes, states, restarts),
            seqset.sequences,
            options.n_threads,
        )
        stats.append(np.array([r[0] for r in results], dtype=np.float64))
        grads.append([r[1] for r in results])
        weights.append(np.array([s.weight for s in seqset], dtype=np.float64))
        is_signal.append(seqset.is_signal)

    if measure == "mmie" and class_params is None:
        class_params = estimate_class_parameters(stats, weights, is_signal, options)
    score, coefficients = contrast_score(measure, stats, weights, is_signal, options, class_params)
    gradient = Gradient.zeros(model.n_states, model.n_emissions)
    for set_grads, set_coefficients in zip(grads, coefficients):
        for g, c in zip(set_grads, set_coefficients):
            if c != 0:
                gradient.add_scaled(g, c)
    return score, gradient, class_params


def compute_gradient(model, collection, task, options, class_params=None):
    """Score and gradient of a training task on a collection.

    Parameters
    ----------
    model : ProfileHMM
    collection : Collection
    task : Task
        Supplies the measure, the present motif groups and the targeted rows
    options : HMMOptions
    class_params : list of ClassParameters, optional
        Per contrast, fixed class likelihood parameters for measure "mmie"

    Returns
    -------
    score : float
    gradient : Gradient
        Restricted to the targeted rows
    class_params : list
        Per contrast, the class likelihood parameters used (None for other measures)

    Raises
    ------
    CalculationInfinityError
        If the score or the gradient is not finite
    """
    require_gradient(task.measure)
    factors = contrast_factors([c.n_sequences for c in collection], options.weighting)
    score = 0.0
    gradient = Gradient.zeros(model.n_states, model.n_emissions)
    used = []
    for k, contrast in enumerate(collection):
        params = class_params[k] if class_params is not None else None
        s, g, params = contrast_gradient(model, contrast, task.measure, task.motifs, options, params)
        score += factors[k] * s
        gradient.add_scaled(g, factors[k])
        used.append(params)
    gradient = gradient.restrict(task.targets.transition, task.targets.emission)
    if not np.isfinite(score):
        raise CalculationInfinityError("score")
    if not gradient.is_finite():
        raise CalculationInfinityError("gradient")
    logger.debug(f"Gradient of {task.measure}: score {score:.6g}, norm {norm(gradient):.6g}")
    return score, gradient, used
