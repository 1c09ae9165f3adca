"""Objective functions of motif enrichment and their derivatives.

Every discriminative measure is computed from one statistic per sequence (the
posterior probability of at least one occurrence, the log-likelihood, or the expected
number of sites), grouped by the sets of a contrast. Besides the score, each function
returns the derivative of the score with respect to every per-sequence statistic;
:mod:`motifhmm.gradient` chains these coefficients with the per-sequence parameter
gradients.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from .exceptions import GradientNotImplementedError
from .inference import (
    expected_posterior,
    forward_scale,
    log_likelihood_from_scale,
    pair_posterior_atleast_one,
    posterior_atleast_one,
    viterbi,
)
from .utils import emission_lookup, parallel_map

logger = logging.getLogger(__name__)

GENERATIVE_MEASURES = ("bw", "viterbi")
DISCRIMINATIVE_MEASURES = ("mi", "ri", "mcc", "dlogl", "dips", "dipss", "mmie", "cmi")
MEASURES = GENERATIVE_MEASURES + DISCRIMINATIVE_MEASURES

#: Which per-sequence statistic each measure is computed from.
STATISTIC = {
    "bw": "log_likelihood",
    "viterbi": "viterbi",
    "dlogl": "log_likelihood",
    "mi": "posterior",
    "ri": "posterior",
    "mcc": "posterior",
    "dips": "posterior",
    "mmie": "posterior",
    "dipss": "sites",
    "cmi": "pair_posterior",
}

#: Measures for which an analytic gradient is available.
DIFFERENTIABLE = tuple(m for m in MEASURES if m != "cmi")


def is_generative(measure: str) -> bool:
    return measure in GENERATIVE_MEASURES


def is_discriminative(measure: str) -> bool:
    return measure in DISCRIMINATIVE_MEASURES


def check_measure(measure: str) -> None:
    assert measure in MEASURES, f"Unknown measure {measure}; choose from {MEASURES}"


@dataclass
class ClassParameters:
    """Parameters of the class likelihood (MMIE) objective of one contrast.

    Attributes
    ----------
    class_prior : float
        Prior probability of the signal class
    motif_prior1 : float
        Probability of a motif occurrence in signal sequences
    motif_prior2 : float
        Probability of a motif occurrence in control sequences
    """

    class_prior: float
    motif_prior1: float
    motif_prior2: float


def _xlogx(v):
    v = np.asarray(v, dtype=np.float64)
    with np.errstate(divide="ignore", invalid="ignore"):
        return np.where(v > 0, v * np.log(np.where(v > 0, v, 1.0)), 0.0)


def mutual_information_table(M: np.ndarray):
    """Mutual information of the row and column variables of a contingency table.

    Parameters
    ----------
    M : np.ndarray
        Non-negative table of (weighted) counts, shape (n_rows, n_cols)

    Returns
    -------
    mi : float
        Mutual information in bits
    dM : np.ndarray
        Derivative of the mutual information with respect to every cell
    """
    M = np.asarray(M, dtype=np.float64)
    N = M.sum()
    if N <= 0:
        return 0.0, np.zeros_like(M)
    r = M.sum(1)
    c = M.sum(0)
    h = _xlogx(M).sum() - _xlogx(r).sum() - _xlogx(c).sum() + float(_xlogx(N))
    mi = h / N
    with np.errstate(divide="ignore", invalid="ignore"):
        dM = (np.log(M) + np.log(N) - np.log(r)[:, None] - np.log(c)[None, :] - mi) / N
    return float(mi / np.log(2)), dM / np.log(2)


def _presence_table(stats, weights, pseudo_count):
    """Rows: sets; columns: occurrence present, absent."""
    return np.array(
        [[np.dot(w, p) + pseudo_count, np.dot(w, 1.0 - p) + pseudo_count] for p, w in zip(stats, weights)]
    )


def mutual_information(stats, weights, pseudo_count: float = 1.0):
    """Mutual information of condition and motif occurrence in bits.

    Parameters
    ----------
    stats : list of np.ndarray
        Occurrence posteriors of the sequences of each set
    weights : list of np.ndarray
        Sequence weights of each set
    pseudo_count : float, default=1.0
        Added to every cell of the contingency table

    Returns
    -------
    score : float
    coefficients : list of np.ndarray
        Derivative of the score with respect to every posterior
    """
    M = _presence_table(stats, weights, pseudo_count)
    mi, dM = mutual_information_table(M)
    coefficients = [w * (dM[k, 0] - dM[k, 1]) for k, w in enumerate(weights)]
    return mi, coefficients


def rank_information_set(p: np.ndarray, w: np.ndarray, pseudo_count: float = 1.0):
    """Mean mutual information of rank cut-off and motif occurrence for one ranked set.

    For every cut point r the sequences are split into the r best ranked and the rest;
    the score is the mean of the mutual information of these 2x2 tables.
    """
    n = len(p)
    if n < 2:
        return 0.0, np.zeros(n)
    cum_present = np.cumsum(w * p)
    cum_absent = np.cumsum(w * (1.0 - p))
    total_present = cum_present[-1]
    total_absent = cum_absent[-1]
    score = 0.0
    top = np.zeros(n - 1)
    rest = np.zeros(n - 1)
    for cut in range(1, n):
        M = np.array(
            [
                [cum_present[cut - 1], cum_absent[cut - 1]],
                [total_present - cum_present[cut - 1], total_absent - cum_absent[cut - 1]],
            ]
        )
        mi, dM = mutual_information_table(M + pseudo_count)
        score += mi
        top[cut - 1] = dM[0, 0] - dM[0, 1]
        rest[cut - 1] = dM[1, 0] - dM[1, 1]
    # sequence i is among the top for cuts i+1..n-1 and in the rest for cuts 1..i
    top_suffix = np.append(np.cumsum(top[::-1])[::-1], 0.0)
    rest_prefix = np.concatenate([[0.0], np.cumsum(rest)])
    coefficients = w * (top_suffix + rest_prefix) / (n - 1)
    return score / (n - 1), coefficients


def rank_information(stats, weights, pseudo_count: float = 1.0):
    """Rank information summed over the sets of a contrast."""
    score = 0.0
    coefficients = []
    for p, w in zip(stats, weights):
        s, c = rank_information_set(p, w, pseudo_count)
        score += s
        coefficients.append(c)
    return score, coefficients


def _pooled(stats, weights, is_signal, signal: bool):
    p = sum((np.dot(w, s) for s, w, sig in zip(stats, weights, is_signal) if sig == signal), 0.0)
    total = sum((w.sum() for w, sig in zip(weights, is_signal) if sig == signal), 0.0)
    return float(p), float(total)


def matthews_correlation_coefficient(stats, weights, is_signal, pseudo_count: float = 1.0):
    """Matthews correlation coefficient of signal vs. control and motif occurrence."""
    tp, n_signal = _pooled(stats, weights, is_signal, True)
    fp, n_control = _pooled(stats, weights, is_signal, False)
    fn = n_signal - tp + pseudo_count
    tn = n_control - fp + pseudo_count
    tp += pseudo_count
    fp += pseudo_count
    den = np.sqrt((tp + fp) * (tp + fn) * (tn + fp) * (tn + fn))
    if den == 0:
        return 0.0, [np.zeros_like(w) for w in weights]
    mcc = (tp * tn - fp * fn) / den
    d_tp = tn / den - mcc * 0.5 * (1 / (tp + fp) + 1 / (tp + fn))
    d_tn = tp / den - mcc * 0.5 * (1 / (tn + fp) + 1 / (tn + fn))
    d_fp = -fn / den - mcc * 0.5 * (1 / (tp + fp) + 1 / (tn + fp))
    d_fn = -fp / den - mcc * 0.5 * (1 / (tp + fn) + 1 / (tn + fn))
    coefficients = [w * ((d_tp - d_fn) if sig else (d_fp - d_tn)) for w, sig in zip(weights, is_signal)]
    return float(mcc), coefficients


def _mean_difference(stats, weights, is_signal, pseudo_count_num=0.0, pseudo_count_den=0.0):
    """(sum w s + a) / (W + b) over signal minus the same over control."""
    score = 0.0
    coefficients = []
    totals = {}
    for signal in (True, False):
        num, total = _pooled(stats, weights, is_signal, signal)
        totals[signal] = total
        if total == 0:
            continue
        value = (num + pseudo_count_num) / (total + pseudo_count_den)
        score += value if signal else -value
    for w, sig in zip(weights, is_signal):
        sign = 1.0 if sig else -1.0
        coefficients.append(sign * w / (totals[sig] + pseudo_count_den))
    return score, coefficients


def log_likelihood_difference(stats, weights, is_signal):
    """Mean log-likelihood of the signal sequences minus that of the control sequences."""
    return _mean_difference(stats, weights, is_signal)


def dips_tscore(stats, weights, is_signal, pseudo_count: float = 1.0):
    """Difference of the smoothed frequencies of sequences with an occurrence."""
    return _mean_difference(stats, weights, is_signal, pseudo_count, 2 * pseudo_count)


def dips_sitescore(stats, weights, is_signal):
    """Difference of the mean expected number of sites per sequence."""
    return _mean_difference(stats, weights, is_signal)


def estimate_class_parameters(stats, weights, is_signal, options) -> ClassParameters:
    """Class and conditional motif priors of a contrast.

    Priors are estimated from the data as pseudo-count smoothed frequencies where
    learning is enabled, and taken from the options otherwise.
    """
    pc = options.contingency_pseudo_count
    present_signal, n_signal = _pooled(stats, weights, is_signal, True)
    present_control, n_control = _pooled(stats, weights, is_signal, False)
    class_prior = options.class_prior
    motif_prior1 = options.conditional_motif_prior1
    motif_prior2 = options.conditional_motif_prior2
    if options.learn_class_prior:
        class_prior = (n_signal + pc) / (n_signal + n_control + 2 * pc)
    if options.learn_conditional_motif_prior:
        if n_signal + pc > 0:
            motif_prior1 = (present_signal + pc) / (n_signal + 2 * pc)
        if n_control + pc > 0:
            motif_prior2 = (present_control + pc) / (n_control + 2 * pc)
    return ClassParameters(float(class_prior), float(motif_prior1), float(motif_prior2))


def class_likelihood(stats, weights, is_signal, params: ClassParameters):
    """Log-likelihood of the class labels given the occurrence posteriors (MMIE)."""
    pi = params.class_prior
    m1 = params.motif_prior1
    m2 = params.motif_prior2
    score = 0.0
    coefficients = []
    for p, w, sig in zip(stats, weights, is_signal):
        a = pi * ((1 - m1) + (2 * m1 - 1) * p)
        b = (1 - pi) * ((1 - m2) + (2 * m2 - 1) * p)
        da = pi * (2 * m1 - 1)
        db = (1 - pi) * (2 * m2 - 1)
        correct, d_correct = (a, da) if sig else (b, db)
        with np.errstate(divide="ignore", invalid="ignore"):
            score += float(np.dot(w, np.log(correct) - np.log(a + b)))
            coefficients.append(w * (d_correct / correct - (da + db) / (a + b)))
    return score, coefficients


def conditional_mutual_information(pair_stats, weights, pseudo_count: float = 1.0) -> float:
    """Mutual information of condition and motif occurrence given the previous motifs.

    Parameters
    ----------
    pair_stats : list of np.ndarray
        Per set, an array of shape (n_seqs, 4) with the posteriors of the present motif,
        of the previous motifs, of both, and of none
    """
    N = np.zeros((len(pair_stats), 2, 2))
    for k, (s, w) in enumerate(zip(pair_stats, weights)):
        first, second, both, none = s[:, 0], s[:, 1], s[:, 2], s[:, 3]
        N[k, 1, 1] = np.dot(w, both)
        N[k, 1, 0] = np.dot(w, first - both)
        N[k, 0, 1] = np.dot(w, second - both)
        N[k, 0, 0] = np.dot(w, none)
    N += pseudo_count
    total = N.sum()
    if total <= 0:
        return 0.0
    n_y = N.sum((0, 1))
    n_ky = N.sum(1)
    n_xy = N.sum(0)
    cmi = 0.0
    for k in range(N.shape[0]):
        for x in range(2):
            for y in range(2):
                if N[k, x, y] > 0:
                    cmi += N[k, x, y] / total * np.log(N[k, x, y] * n_y[y] / (n_ky[k, y] * n_xy[x, y]))
    return float(cmi / np.log(2))


def contrast_score(measure, stats, weights, is_signal, options, class_params: ClassParameters | None = None):
    """Score of one contrast and the derivatives with respect to the statistics.

    Parameters
    ----------
    measure : str
        Measure tag
    stats : list of np.ndarray
        Per set, the statistic given by ``STATISTIC[measure]`` of every sequence
    weights : list of np.ndarray
        Per set, the weight of every sequence
    is_signal : list of bool
        Per set, whether it is a signal set
    options : HMMOptions
        Supplies the contingency pseudo count and the class likelihood priors
    class_params : ClassParameters, optional
        Fixed class likelihood parameters; estimated from the statistics if not given

    Returns
    -------
    score : float
    coefficients : list of np.ndarray or None
        None for measures without gradient
    """
    pc = options.contingency_pseudo_count
    if measure in GENERATIVE_MEASURES:
        return float(sum(np.dot(w, s) for s, w in zip(stats, weights))), [w.copy() for w in weights]
    if measure == "mi":
        return mutual_information(stats, weights, pc)
    if measure == "ri":
        return rank_information(stats, weights, pc)
    if measure == "mcc":
        return matthews_correlation_coefficient(stats, weights, is_signal, pc)
    if measure == "dlogl":
        return log_likelihood_difference(stats, weights, is_signal)
    if measure == "dips":
        return dips_tscore(stats, weights, is_signal, pc)
    if measure == "dipss":
        return dips_sitescore(stats, weights, is_signal)
    if measure == "mmie":
        if class_params is None:
            class_params = estimate_class_parameters(stats, weights, is_signal, options)
        return class_likelihood(stats, weights, is_signal, class_params)
    if measure == "cmi":
        return conditional_mutual_information(stats, weights, pc), None
    raise ValueError(f"Unknown measure {measure}")


def contrast_factors(sizes, weighting: bool) -> np.ndarray:
    """Factors combining per-contrast scores into one score.

    Without weighting, contrast scores are summed. With weighting, they are averaged
    with weights proportional to the number of sequences per contrast.
    """
    sizes = np.asarray(sizes, dtype=np.float64)
    if not weighting or sizes.sum() == 0:
        return np.ones_like(sizes)
    return sizes / sizes.sum()


def require_gradient(measure: str) -> None:
    if measure not in DIFFERENTIABLE:
        raise GradientNotImplementedError(measure)


def sequence_statistic(statistic, T, E_ext, x, states=(), previous=(), restarts=()):
    """The per-sequence statistic a measure is computed from."""
    if statistic == "log_likelihood":
        return log_likelihood_from_scale(forward_scale(T, E_ext, x))
    if statistic == "viterbi":
        return viterbi(T, E_ext, x)[1]
    if statistic == "posterior":
        return posterior_atleast_one(T, E_ext, x, states)[1]
    if statistic == "sites":
        return expected_posterior(T, E_ext, x, states, restarts)
    if statistic == "pair_posterior":
        return np.array(pair_posterior_atleast_one(T, E_ext, x, states, previous)[1:])
    raise ValueError(f"Unknown statistic {statistic}")


def collection_score(model, collection, measure, present, options, class_params=None, previous=()) -> float:
    """Score of a measure on a collection, combining the contrasts.

    Parameters
    ----------
    model : ProfileHMM
    collection : Collection
    measure : str
        Measure tag
    present : iterable of int
        Motif groups whose occurrence is evaluated
    options : HMMOptions
    class_params : list of ClassParameters, optional
        Per contrast, fixed class likelihood parameters for measure "mmie"
    previous : iterable of int
        Motif groups conditioned on, for measure "cmi"
    """
    check_measure(measure)
    statistic = STATISTIC[measure]
    T = np.array(model.transition, dtype=np.float64)
    E_ext = emission_lookup(np.array(model.emission, dtype=np.float64))
    states = model.motif_states(present)
    previous_states = model.motif_states(previous)
    restarts = model.motif_restarts(present)
    if measure == "cmi":
        assert previous_states, "Conditional mutual information requires previous motifs"

    factors = contrast_factors([c.n_sequences for c in collection], options.weighting)
    score = 0.0
    for k, contrast in enumerate(collection):
        stats, weights, is_signal = [], [], []
        for seqset in contrast:
            values = parallel_map(
                lambda s: sequence_statistic(statistic, T, E_ext, s.codes, states, previous_states, restarts),
                seqset.sequences,
                options.n_threads,
            )
            if statistic == "pair_posterior":
                stats.append(np.array(values, dtype=np.float64).reshape(len(values), 4))
            else:
                stats.append(np.array(values, dtype=np.float64))
            weights.append(np.array([s.weight for s in seqset], dtype=np.float64))
            is_signal.append(seqset.is_signal)
        params = class_params[k] if class_params is not None else None
        s, _ = contrast_score(measure, stats, weights, is_signal, options, params)
        score += factors[k] * s
    return float(score)
