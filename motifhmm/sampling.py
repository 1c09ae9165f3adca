"""Markov chain Monte Carlo search over motif structures with parallel tempering."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import numpy as np
from joblib import Parallel, delayed
from tqdm import trange

from .measures import collection_score

logger = logging.getLogger(__name__)

MODIFY_COLUMN, SWAP_COLUMNS, ADD_COLUMNS, DELETE_COLUMNS, SHIFT, MODIFY_TRANSITION = range(6)
OPERATIONS = ("modify column", "swap columns", "add columns", "delete columns", "shift", "modify transition")


def size_bounds(model, options) -> dict:
    """Minimum and maximum chain length of every motif group.

    Bounds not given in the options default to the current motif length.
    """
    bounds = {}
    for idx in model.motif_groups():
        length = model.motif_length(idx)
        lo = options.sampling.min_size if options.sampling.min_size is not None else length
        hi = options.sampling.max_size if options.sampling.max_size is not None else length
        assert 0 < lo <= hi, "Sampling requires 0 < min_size <= max_size"
        bounds[idx] = (lo, hi)
    return bounds


def random_variant(model, options, rng: np.random.Generator, bounds: dict | None = None):
    """Propose a mutated copy of the model.

    One of the six operations is drawn uniformly and applied to a randomly chosen
    motif group; inapplicable operations are re-drawn.

    Parameters
    ----------
    model : ProfileHMM
        Current model; not modified
    options : HMMOptions
    rng : np.random.Generator
    bounds : dict, optional
        Per motif group, the minimum and maximum chain length

    Returns
    -------
    candidate : ProfileHMM
    operation : int
    """
    if bounds is None:
        bounds = size_bounds(model, options)
    sampling = options.sampling
    group_idx = int(rng.choice(model.motif_groups()))
    n_cols = model.motif_length(group_idx)
    lo, hi = bounds[group_idx]
    n_ins = max(0, min(sampling.n_indels, hi - n_cols))
    n_del = max(
        0,
        min(
            sampling.n_indels,
            n_cols - lo,
            max(model.deletable_columns(group_idx, True), model.deletable_columns(group_idx, False)),
        ),
    )
    n_shift = min(
        sampling.n_shift,
        max(model.deletable_columns(group_idx, True), model.deletable_columns(group_idx, False)),
    )

    def eligible(op):
        if op == MODIFY_TRANSITION:
            return options.bg_learning != "fixed"
        if not options.objectives:
            return False
        if op == SWAP_COLUMNS:
            return n_cols > 1
        if op == ADD_COLUMNS:
            return n_ins > 0
        if op == DELETE_COLUMNS:
            return n_del > 0
        if op == SHIFT:
            return n_shift > 0
        return True

    assert any(eligible(op) for op in range(len(OPERATIONS))), "No MCMC operation is applicable"
    operation = int(rng.integers(len(OPERATIONS)))
    while not eligible(operation):
        operation = int(rng.integers(len(OPERATIONS)))
    logger.debug(f"MCMC operation: {OPERATIONS[operation]} on motif {model.group_name(group_idx)}")

    candidate = model.clone()
    if operation == MODIFY_COLUMN:
        candidate.modify_column(rng, group_idx)
    elif operation == SWAP_COLUMNS:
        candidate.swap_columns(rng, group_idx)
    elif operation == ADD_COLUMNS:
        candidate.add_columns(int(rng.integers(1, n_ins + 1)), rng, group_idx)
    elif operation == DELETE_COLUMNS:
        candidate.del_columns(int(rng.integers(1, n_del + 1)), rng, group_idx)
    elif operation == SHIFT:
        n = int(rng.integers(1, n_shift + 1))
        candidate.del_columns(n, rng, group_idx)
        candidate.add_columns(n, rng, group_idx)
    else:
        candidate.modify_transition(rng)
    candidate.normalize_emission()
    candidate.finalize_initialization()
    return candidate, operation


def metropolis_accept(current: float, proposed: float, temperature: float, rng: np.random.Generator) -> bool:
    """Metropolis criterion for maximizing a score at the given temperature."""
    if not np.isfinite(proposed):
        return False
    if proposed >= current:
        return True
    return bool(rng.uniform() < np.exp((proposed - current) / temperature))


def swap_probability(score_i: float, score_j: float, temperature_i: float, temperature_j: float) -> float:
    """Replica exchange acceptance probability of two chains."""
    x = (1.0 / temperature_i - 1.0 / temperature_j) * (score_j - score_i)
    return float(min(1.0, np.exp(min(x, 0.0))))


@dataclass
class Chain:
    """One chain of parallel tempering."""

    temperature: float
    model: object
    score: float
    rng: np.random.Generator
    trajectory: list = field(default_factory=list)
    n_accepted: int = 0


@dataclass
class SamplingResult:
    """Outcome of parallel tempering.

    Attributes
    ----------
    trajectories : list of list of (ProfileHMM, float)
        Per chain, in order of decreasing temperature, the accepted states
    coldest : list of (ProfileHMM, float)
        Trajectory of the coldest chain
    best_model : ProfileHMM
    best_score : float
    temperatures : list of float
    """

    trajectories: list
    coldest: list
    best_model: object
    best_score: float
    temperatures: list


def _step(chain: Chain, collection, task, options, bounds) -> Chain:
    candidate, _ = random_variant(chain.model, options, chain.rng, bounds)
    score = collection_score(candidate, collection, task.measure, task.motifs, options)
    if metropolis_accept(chain.score, score, chain.temperature, chain.rng):
        chain.model = candidate
        chain.score = score
        chain.trajectory.append((candidate, score))
        chain.n_accepted += 1
    return chain


def parallel_tempering(model, collection, task, options, n_iter: int | None = None, progress: bool = True) -> SamplingResult:
    """Sample motif structures with parallel tempering.

    Chains start from copies of the model at temperatures ``temperature / 2**k``. Every
    iteration each chain proposes and accepts or rejects a variant; the chains step
    concurrently and are synchronized before adjacent chains attempt to swap states
    every ``swap_interval`` iterations.

    Parameters
    ----------
    model : ProfileHMM
        Initial model; not modified
    collection : Collection
    task : Task
        Supplies the measure and the present motif groups of the score
    options : HMMOptions
        ``random_salt`` seeds the per-chain random streams
    n_iter : int, optional
        Number of iterations; defaults to ``options.termination.max_iter``
    progress : bool, default=True
        Show a progress bar

    Returns
    -------
    result : SamplingResult
    """
    sampling = options.sampling
    if n_iter is None:
        n_iter = options.termination.max_iter
    assert n_iter > 0, "Sampling requires a positive number of iterations"
    bounds = size_bounds(model, options)

    seeds = np.random.SeedSequence(options.random_salt).spawn(sampling.n_parallel + 1)
    swap_rng = np.random.default_rng(seeds[-1])
    score = collection_score(model, collection, task.measure, task.motifs, options)
    chains = []
    temperature = sampling.temperature
    for k in range(sampling.n_parallel):
        initial = model.clone()
        chains.append(Chain(temperature, initial, score, np.random.default_rng(seeds[k]), [(initial, score)]))
        temperature /= 2
    temperatures = [c.temperature for c in chains]
    logger.info(f"Parallel tempering with temperatures {temperatures}")

    pbar = trange(n_iter, position=0, disable=not progress)
    with Parallel(n_jobs=options.n_threads, prefer="threads") as parallel:
        for it in pbar:
            chains = parallel(delayed(_step)(c, collection, task, options, bounds) for c in chains)
            if (it + 1) % sampling.swap_interval == 0:
                for i in range(len(chains) - 1):
                    a, b = chains[i], chains[i + 1]
                    p = swap_probability(a.score, b.score, a.temperature, b.temperature)
                    if swap_rng.uniform() < p:
                        logger.debug(f"Swapping chains {i} and {i + 1}")
                        a.model, b.model = b.model, a.model
                        a.score, b.score = b.score, a.score
                        a.trajectory.append((a.model, a.score))
                        b.trajectory.append((b.model, b.score))
            pbar.set_postfix(score=chains[-1].score)

    best_model, best_score = model, score
    for chain in chains:
        logger.info(f"Chain at temperature {chain.temperature:.3g} accepted {chain.n_accepted} of {n_iter} proposals")
        for m, s in chain.trajectory:
            if s > best_score:
                best_model, best_score = m, s
    return SamplingResult(
        [c.trajectory for c in chains],
        chains[-1].trajectory,
        best_model.clone(),
        best_score,
        temperatures,
    )


def mcmc(model, collection, task, options, progress: bool = True) -> SamplingResult:
    """Run parallel tempering with the sampling options."""
    logger.info(f"Sampling motif structures with {options.sampling.n_parallel} chains")
    return parallel_tempering(model, collection, task, options, progress=progress)
