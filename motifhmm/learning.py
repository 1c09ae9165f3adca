"""Expected sufficient statistics and re-estimation (Baum-Welch and Viterbi learning)."""

from __future__ import annotations

import logging

import numba as nb
import numpy as np

from .inference import backward_prescaled, forward_scaled, log_likelihood_from_scale, viterbi
from .utils import SUPPORT, emission_lookup, normalize_rows, parallel_map

logger = logging.getLogger(__name__)


@nb.njit(nogil=True)
def update_counts(C_T, C_E, T, E, E_ext, support, x, F, B, scale, weight):
    """Accumulate expected transition and emission counts from forward-backward.

    This is the E-step of Baum-Welch learning. Counts are added in-place.

    Parameters
    ----------
    C_T : np.ndarray
        Transition count matrix to update, shape (n_states, n_states)
    C_E : np.ndarray
        Emission count matrix to update, shape (n_states, 4)
    T : np.ndarray
        Transition matrix, shape (n_states, n_states)
    E : np.ndarray
        Emission matrix, shape (n_states, 4)
    E_ext : np.ndarray
        Emission probabilities per symbol, shape (n_states, n_symbols)
    support : np.ndarray
        Nucleotides consistent with each symbol, shape (n_symbols, 4)
    x : np.ndarray
        Encoded sequence, shape (L,)
    F, B : np.ndarray
        Scaled forward and backward messages, shape (n_states, L + 1)
    scale : np.ndarray
        Scale vector, shape (L + 1,)
    weight : float
        Weight of the sequence
    """
    n_states = T.shape[0]
    L = x.shape[0]
    for t in range(1, L + 1):
        c = scale[t]
        if c == 0.0:
            return
        sym = x[t - 1]
        # transitions from position t - 1 to t
        for i in range(n_states):
            f = F[i, t - 1]
            if f == 0.0:
                continue
            for j in range(n_states):
                if T[i, j] == 0.0:
                    continue
                C_T[i, j] += weight * f * T[i, j] * E_ext[j, sym] * B[j, t] / c
        # emissions at position t; degenerate symbols are spread over their support
        for j in range(1, n_states):
            g = F[j, t] * B[j, t]
            if g == 0.0:
                continue
            e = E_ext[j, sym]
            for k in range(E.shape[1]):
                if support[sym, k]:
                    C_E[j, k] += weight * g * E[j, k] / e


@nb.njit(nogil=True)
def update_counts_viterbi(C_T, C_E, E, E_ext, support, x, path, weight):
    """Accumulate hard transition and emission counts along a Viterbi path."""
    prev = 0
    for t in range(x.shape[0]):
        s = path[t]
        sym = x[t]
        C_T[prev, s] += weight
        e = E_ext[s, sym]
        for k in range(E.shape[1]):
            if support[sym, k] and e > 0.0:
                C_E[s, k] += weight * E[s, k] / e
        prev = s


@nb.njit(nogil=True)
def update_counts_counting(C2_T, C2_E, T, E, E_ext, support, x, F, B, F1, B1, entry, scale):
    """Accumulate expected products of occurrence count and sufficient statistics.

    With ``n`` the number of motif entries along a path and ``s`` a transition or
    emission count, this adds E[n * s] to C2_T and C2_E (unweighted).
    """
    n_states = T.shape[0]
    L = x.shape[0]
    for t in range(1, L + 1):
        c = scale[t]
        if c == 0.0:
            return
        sym = x[t - 1]
        for i in range(n_states):
            f = F[i, t - 1]
            f1 = F1[i, t - 1]
            if f == 0.0 and f1 == 0.0:
                continue
            for j in range(n_states):
                if T[i, j] == 0.0:
                    continue
                p = T[i, j] * E_ext[j, sym] / c
                acc = f1 * B[j, t] + f * B1[j, t]
                if entry[i, j]:
                    acc += f * B[j, t]
                C2_T[i, j] += p * acc
        for j in range(1, n_states):
            g = F1[j, t] * B[j, t] + F[j, t] * B1[j, t]
            if g == 0.0:
                continue
            e = E_ext[j, sym]
            for k in range(E.shape[1]):
                if support[sym, k]:
                    C2_E[j, k] += g * E[j, k] / e


def expected_counts(T, E, x, weight=1.0, E_ext=None):
    """Expected transition and emission counts of a single sequence.

    Returns
    -------
    log_lik : float
        Natural log-likelihood of the sequence
    C_T : np.ndarray
        Expected transition counts, shape (n_states, n_states)
    C_E : np.ndarray
        Expected emission counts, shape (n_states, 4)
    """
    if E_ext is None:
        E_ext = emission_lookup(E)
    F, scale = forward_scaled(T, E_ext, x)
    C_T = np.zeros_like(T)
    C_E = np.zeros_like(E)
    log_lik = log_likelihood_from_scale(scale)
    if log_lik == -np.inf:
        return log_lik, C_T, C_E
    B = backward_prescaled(T, E_ext, x, scale)
    update_counts(C_T, C_E, T, E, E_ext, SUPPORT, x, F, B, scale, weight)
    return log_lik, C_T, C_E


def viterbi_counts(T, E, x, weight=1.0, E_ext=None):
    """Hard transition and emission counts of the Viterbi path of a single sequence."""
    if E_ext is None:
        E_ext = emission_lookup(E)
    path, log_p = viterbi(T, E_ext, x)
    C_T = np.zeros_like(T)
    C_E = np.zeros_like(E)
    if log_p > -np.inf:
        update_counts_viterbi(C_T, C_E, E, E_ext, SUPPORT, x, path, weight)
    return log_p, C_T, C_E


def reestimate(T, E, C_T, C_E, transition_rows, emission_rows, transition_pseudo_count=0.0, emission_pseudo_count=0.0):
    """M-step: turn accumulated counts into new parameters for the targeted rows.

    The transition pseudo count is only added to structurally allowed transitions, so
    the topology is preserved. Rows without any counts become zero rows, marking
    unreachable states.

    Returns
    -------
    T_new, E_new : np.ndarray
        New transition and emission matrices; rows not targeted are copied unchanged
    """
    T_new = T.copy()
    E_new = E.copy()
    rows = np.asarray(sorted(transition_rows), dtype=np.int64)
    if rows.size:
        allowed = T[rows] > 0
        T_new[rows] = normalize_rows(np.where(allowed, C_T[rows] + transition_pseudo_count, 0.0))
    rows = np.asarray(sorted(emission_rows), dtype=np.int64)
    if rows.size:
        E_new[rows] = normalize_rows(C_E[rows] + emission_pseudo_count)
    return T_new, E_new


def _accumulate(T, E, sequences, count_fn, n_jobs):
    E_ext = emission_lookup(E)
    results = parallel_map(lambda s: count_fn(T, E, s.codes, s.weight, E_ext), sequences, n_jobs)
    C_T = np.zeros_like(T)
    C_E = np.zeros_like(E)
    score = 0.0
    for (log_p, c_t, c_e), seq in zip(results, sequences):
        score += seq.weight * log_p
        C_T += c_t
        C_E += c_e
    return score, C_T, C_E


def baum_welch_iteration(T, E, sequences, transition_rows, emission_rows, transition_pseudo_count=0.0, emission_pseudo_count=1.0, n_jobs=1):
    """Perform one iteration of scaled Baum-Welch learning.

    Parameters
    ----------
    T, E : np.ndarray
        Current transition and emission matrices
    sequences : list of Sequence
        Training sequences
    transition_rows, emission_rows : iterable of int
        States whose outgoing transitions and emissions are re-estimated

    Returns
    -------
    log_lik : float
        Weighted training-set log-likelihood under the current parameters
    T_new, E_new : np.ndarray
        Re-estimated parameters
    """
    log_lik, C_T, C_E = _accumulate(T, E, sequences, expected_counts, n_jobs)
    T_new, E_new = reestimate(T, E, C_T, C_E, transition_rows, emission_rows, transition_pseudo_count, emission_pseudo_count)
    return log_lik, T_new, E_new


def viterbi_iteration(T, E, sequences, transition_rows, emission_rows, transition_pseudo_count=0.0, emission_pseudo_count=1.0, n_jobs=1):
    """Perform one iteration of Viterbi learning (hard-assignment EM).

    Returns
    -------
    log_p : float
        Summed weighted log probability of the Viterbi paths under the current parameters
    T_new, E_new : np.ndarray
        Re-estimated parameters
    """
    log_p, C_T, C_E = _accumulate(T, E, sequences, viterbi_counts, n_jobs)
    T_new, E_new = reestimate(T, E, C_T, C_E, transition_rows, emission_rows, transition_pseudo_count, emission_pseudo_count)
    return log_p, T_new, E_new


def parameter_change(T, E, T_new, E_new) -> float:
    """L1 norm of the parameter change between two iterations."""
    return float(np.abs(T_new - T).sum() + np.abs(E_new - E).sum())
