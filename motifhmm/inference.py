"""Inference algorithms: scaled forward-backward, Viterbi, and occurrence posteriors.

All kernels operate on a transition matrix ``T`` of shape (n_states, n_states) and an
expanded emission table ``E_ext`` of shape (n_states, n_symbols) as produced by
:func:`motifhmm.utils.emission_lookup`. State 0 is the non-emitting start state;
message matrices have one column per sequence position plus the initial column 0.
"""

from __future__ import annotations

import numba as nb
import numpy as np

START_STATE = 0


@nb.njit(nogil=True)
def forward_scaled(T, E_ext, x):
    """Sum-product forward pass with per-position scaling.

    Parameters
    ----------
    T : np.ndarray
        Transition matrix, shape (n_states, n_states)
    E_ext : np.ndarray
        Emission probabilities per symbol, shape (n_states, n_symbols)
    x : np.ndarray
        Encoded sequence, shape (L,) of integers

    Returns
    -------
    F : np.ndarray
        Scaled forward messages, shape (n_states, L + 1); every column sums to one
    scale : np.ndarray
        Scale factors, shape (L + 1,); the likelihood is their product
    """
    n_states = T.shape[0]
    L = x.shape[0]
    F = np.zeros((n_states, L + 1))
    scale = np.ones(L + 1)
    F[START_STATE, 0] = 1.0
    for t in range(1, L + 1):
        sym = x[t - 1]
        for i in range(n_states):
            f = F[i, t - 1]
            if f == 0.0:
                continue
            for j in range(n_states):
                F[j, t] += f * T[i, j]
        z = 0.0
        for j in range(n_states):
            F[j, t] *= E_ext[j, sym]
            z += F[j, t]
        scale[t] = z
        if z == 0.0:
            # impossible sequence; remaining columns stay zero
            for s in range(t + 1, L + 1):
                scale[s] = 0.0
            break
        for j in range(n_states):
            F[j, t] /= z
    return F, scale


@nb.njit(nogil=True)
def forward_scale(T, E_ext, x):
    """Compute only the scale vector of the scaled forward pass."""
    n_states = T.shape[0]
    L = x.shape[0]
    scale = np.ones(L + 1)
    message = np.zeros(n_states)
    message[START_STATE] = 1.0
    for t in range(1, L + 1):
        sym = x[t - 1]
        new_message = np.zeros(n_states)
        for i in range(n_states):
            f = message[i]
            if f == 0.0:
                continue
            for j in range(n_states):
                new_message[j] += f * T[i, j]
        z = 0.0
        for j in range(n_states):
            new_message[j] *= E_ext[j, sym]
            z += new_message[j]
        scale[t] = z
        if z == 0.0:
            for s in range(t + 1, L + 1):
                scale[s] = 0.0
            break
        message = new_message / z
    return scale


@nb.njit(nogil=True)
def forward_prescaled(T, E_ext, x, scale):
    """Forward pass using a given scale vector."""
    n_states = T.shape[0]
    L = x.shape[0]
    F = np.zeros((n_states, L + 1))
    F[START_STATE, 0] = 1.0
    for t in range(1, L + 1):
        c = scale[t]
        if c == 0.0:
            break
        sym = x[t - 1]
        for i in range(n_states):
            f = F[i, t - 1]
            if f == 0.0:
                continue
            for j in range(n_states):
                F[j, t] += f * T[i, j]
        for j in range(n_states):
            F[j, t] *= E_ext[j, sym] / c
    return F


@nb.njit(nogil=True)
def backward_prescaled(T, E_ext, x, scale):
    """Backward pass using the scale vector of the forward pass.

    With ``F`` from :func:`forward_scaled` and the same scale vector, the posterior
    state occupancy is ``F * B`` and sums to one over states at every position.

    Returns
    -------
    B : np.ndarray
        Scaled backward messages, shape (n_states, L + 1)
    """
    n_states = T.shape[0]
    L = x.shape[0]
    B = np.zeros((n_states, L + 1))
    B[:, L] = 1.0
    tmp = np.zeros(n_states)
    for t in range(L - 1, -1, -1):
        c = scale[t + 1]
        if c == 0.0:
            continue
        sym = x[t]  # emitted when entering position t + 1
        for j in range(n_states):
            tmp[j] = E_ext[j, sym] * B[j, t + 1]
        for i in range(n_states):
            acc = 0.0
            for j in range(n_states):
                acc += T[i, j] * tmp[j]
            B[i, t] = acc / c
    return B


@nb.njit(nogil=True)
def viterbi(T, E_ext, x):
    """Max-product decoding in log space.

    Returns
    -------
    path : np.ndarray
        Most probable state for each sequence position, shape (L,)
    log_p : float
        Natural log probability of the path jointly with the sequence
    """
    n_states = T.shape[0]
    L = x.shape[0]
    log_T = np.full((n_states, n_states), -np.inf)
    for i in range(n_states):
        for j in range(n_states):
            if T[i, j] > 0.0:
                log_T[i, j] = np.log(T[i, j])
    V = np.full(n_states, -np.inf)
    V[START_STATE] = 0.0
    pointers = np.zeros((L, n_states), dtype=np.int64)
    for t in range(1, L + 1):
        sym = x[t - 1]
        new_V = np.full(n_states, -np.inf)
        for j in range(n_states):
            e = E_ext[j, sym]
            if e <= 0.0:
                continue
            best = -np.inf
            arg = 0
            for i in range(n_states):
                if V[i] == -np.inf or log_T[i, j] == -np.inf:
                    continue
                v = V[i] + log_T[i, j]
                if v > best:
                    best = v
                    arg = i
            if best > -np.inf:
                new_V[j] = best + np.log(e)
                pointers[t - 1, j] = arg
        V = new_V
    path = np.zeros(L, dtype=np.int64)
    if L == 0:
        return path, 0.0
    end = 0
    for j in range(1, n_states):
        if V[j] > V[end]:
            end = j
    log_p = V[end]
    path[L - 1] = end
    for t in range(L - 1, 0, -1):
        path[t - 1] = pointers[t, path[t]]
    return path, log_p


@nb.njit(nogil=True)
def forward_counting(T, E_ext, x, scale, entry, F):
    """Forward pass of the expectation semiring counting motif entries.

    ``entry[i, j]`` marks the transitions that start a motif occurrence. The sum of the
    last column of the result is the expected number of occurrences.

    Returns
    -------
    F1 : np.ndarray
        Scaled expected-count forward messages, shape (n_states, L + 1)
    """
    n_states = T.shape[0]
    L = x.shape[0]
    F1 = np.zeros((n_states, L + 1))
    for t in range(1, L + 1):
        c = scale[t]
        if c == 0.0:
            break
        sym = x[t - 1]
        for i in range(n_states):
            f1 = F1[i, t - 1]
            f = F[i, t - 1]
            if f1 == 0.0 and f == 0.0:
                continue
            for j in range(n_states):
                if T[i, j] == 0.0:
                    continue
                acc = f1
                if entry[i, j]:
                    acc += f
                F1[j, t] += acc * T[i, j]
        for j in range(n_states):
            F1[j, t] *= E_ext[j, sym] / c
    return F1


@nb.njit(nogil=True)
def backward_counting(T, E_ext, x, scale, entry, B):
    """Backward pass of the expectation semiring counting motif entries.

    ``B1[i, t]`` is the scaled expected number of occurrences starting after
    position t given state i at t.
    """
    n_states = T.shape[0]
    L = x.shape[0]
    B1 = np.zeros((n_states, L + 1))
    for t in range(L - 1, -1, -1):
        c = scale[t + 1]
        if c == 0.0:
            continue
        sym = x[t]
        for i in range(n_states):
            acc = 0.0
            for j in range(n_states):
                if T[i, j] == 0.0:
                    continue
                b = B1[j, t + 1]
                if entry[i, j]:
                    b += B[j, t + 1]
                acc += T[i, j] * E_ext[j, sym] * b
            B1[i, t] = acc / c
    return B1


def log_likelihood_from_scale(scale: np.ndarray) -> float:
    """Natural log-likelihood of a sequence from its forward scale vector."""
    if np.any(scale == 0):
        return -np.inf
    return float(np.log(scale).sum())


def likelihood_from_scale(scale: np.ndarray) -> float:
    return float(np.prod(scale))


def state_posteriors(F: np.ndarray, B: np.ndarray) -> np.ndarray:
    """Posterior state occupancy, shape (n_states, L + 1)."""
    return F * B


def restrict_transitions(T: np.ndarray, states) -> np.ndarray:
    """Return a copy of T in which no transition enters any of the given states."""
    T_r = T.copy()
    T_r[:, list(states)] = 0.0
    return T_r


def entry_mask(n_states: int, states, restarts=()) -> np.ndarray:
    """Mark transitions that start an occurrence.

    These are the transitions from outside the given states into them, and the
    (last, first) chain transitions in ``restarts`` that begin a back-to-back occurrence.
    """
    inside = np.zeros(n_states, dtype=np.bool_)
    inside[list(states)] = True
    mask = np.outer(~inside, inside)
    for last, first in restarts:
        mask[last, first] = True
    return np.ascontiguousarray(mask)


def posterior_atleast_one(T, E_ext, x, states):
    """Probability that the path visits at least one of the given states.

    Parameters
    ----------
    states : iterable of int
        The states of the motif groups designated as present

    Returns
    -------
    log_lik : float
        Natural log-likelihood of the sequence
    posterior : float
        P(at least one of the states is visited | sequence)
    """
    log_lik = log_likelihood_from_scale(forward_scale(T, E_ext, x))
    log_avoid = log_likelihood_from_scale(forward_scale(restrict_transitions(T, states), E_ext, x))
    if log_lik == -np.inf:
        return log_lik, 0.0
    return log_lik, 1.0 - float(np.exp(log_avoid - log_lik))


def pair_posterior_atleast_one(T, E_ext, x, present, previous):
    """Joint occurrence posteriors of two state sets.

    Returns
    -------
    tuple
        (log_lik, posterior_first, posterior_second, posterior_both, posterior_none)
    """
    present = list(present)
    previous = list(previous)
    log_lik = log_likelihood_from_scale(forward_scale(T, E_ext, x))
    if log_lik == -np.inf:
        return log_lik, 0.0, 0.0, 0.0, 1.0

    def avoid(states):
        ll = log_likelihood_from_scale(forward_scale(restrict_transitions(T, states), E_ext, x))
        return float(np.exp(ll - log_lik))

    avoid_first = avoid(present)
    avoid_second = avoid(previous)
    avoid_both = avoid(present + previous)
    first = 1.0 - avoid_first
    second = 1.0 - avoid_second
    both = max(0.0, 1.0 - avoid_first - avoid_second + avoid_both)
    return log_lik, first, second, both, avoid_both


def expected_posterior(T, E_ext, x, states, restarts=()) -> float:
    """Expected number of motif occurrences, i.e. of entries into the given states.

    Transitions listed in ``restarts`` also start an occurrence.
    """
    F, scale = forward_scaled(T, E_ext, x)
    if np.any(scale == 0):
        return 0.0
    F1 = forward_counting(T, E_ext, x, scale, entry_mask(T.shape[0], states, restarts), F)
    return float(F1[:, -1].sum())
