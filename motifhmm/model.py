"""Profile HMM model class: topology, motif groups and structural mutations."""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from enum import Enum

import numpy as np

from .exceptions import InsertionNotInsideMotifError
from .inference import (
    START_STATE,
    backward_prescaled,
    expected_posterior,
    forward_scaled,
    log_likelihood_from_scale,
    pair_posterior_atleast_one,
    posterior_atleast_one,
    viterbi,
)
from .utils import ALPHABET, N_EMISSIONS, emission_lookup, iupac_char, iupac_support, normalize_rows

logger = logging.getLogger(__name__)

BG_STATE = 1
#: Probability of entering an insertion branch from the preceding core state.
INSERT_TRANSITION_PROBABILITY = 0.5


class GroupKind(Enum):
    SPECIAL = "Special"
    BACKGROUND = "Background"
    MOTIF = "Motif"


@dataclass
class Group:
    """A named set of states of one kind.

    Attributes
    ----------
    kind : GroupKind
        Special (start state), Background, or Motif
    name : str
        Name of the group
    states : list of int
        State indices in increasing order; for motifs these are the left padding,
        core and right padding states (the chain) followed by the insertion states
    insertions : list of int
        The subset of states that are insertion branches
    """

    kind: GroupKind
    name: str
    states: list[int]
    insertions: list[int] = field(default_factory=list)

    @property
    def chain(self) -> list[int]:
        return [s for s in self.states if s not in self.insertions]


def iupac_profile(seq: str, alpha: float = 0.03) -> np.ndarray:
    """Emission profile of an IUPAC string.

    Nucleotides not included in a position's code get probability ``alpha``; the
    remainder is spread evenly over the included nucleotides.

    Returns
    -------
    e : np.ndarray
        Emission matrix, shape (len(seq), 4)
    """
    e = np.zeros((len(seq), N_EMISSIONS))
    for i, c in enumerate(seq):
        these = iupac_support(c)
        e[i] = alpha
        e[i, these] = (1.0 - alpha * (N_EMISSIONS - len(these))) / len(these)
    return normalize_rows(e)


def consensus_of_matrix(m: np.ndarray, threshold: float = 0.1) -> str:
    """IUPAC consensus of an emission matrix.

    For each row the most probable nucleotides are taken, in order of decreasing
    probability, until they cover at least ``1 - threshold`` of the mass.
    """
    chars = []
    for row in m:
        if row.sum() == 0:
            chars.append("-")
            continue
        order = np.argsort(-row, kind="stable")
        members = []
        mass = 0.0
        for k in order:
            members.append(int(k))
            mass += row[k]
            if mass >= (1.0 - threshold) * row.sum() - 1e-12:
                break
        chars.append(iupac_char(members))
    return "".join(chars)


class ProfileHMM:
    """Hidden Markov model of motifs embedded in a background sequence.

    State 0 is the non-emitting start state and state 1 the background state. Every
    further state belongs to exactly one motif group, appended with :meth:`add_motif`.

    Parameters
    ----------
    pseudo_count : float, default=1.0
        Pseudo count to add to contingency tables
    """

    start_state = START_STATE
    bg_state = BG_STATE
    n_emissions = N_EMISSIONS

    def __init__(self, pseudo_count: float = 1.0):
        """Construct an HMM with only the start and background states."""
        self.pseudo_count = pseudo_count
        self.groups: list[Group] = [
            Group(GroupKind.SPECIAL, "Special", [START_STATE]),
            Group(GroupKind.BACKGROUND, "Background", [BG_STATE]),
        ]
        self._transition = np.zeros((2, 2))
        self._transition[START_STATE, BG_STATE] = 1.0
        self._transition[BG_STATE, BG_STATE] = 1.0
        self._emission = np.zeros((2, N_EMISSIONS))
        self._emission[BG_STATE] = 1.0 / N_EMISSIONS
        self.normalize_transition()
        self.normalize_emission()
        self.finalize_initialization()

    @classmethod
    def from_parameters(cls, groups, transition, emission, pseudo_count: float = 1.0) -> ProfileHMM:
        """Construct an HMM from explicit groups and parameter matrices, as read from a file.

        The matrices are taken as they are, without re-normalization.
        """
        hmm = cls(pseudo_count)
        transition = np.array(transition, dtype=np.float64)
        emission = np.array(emission, dtype=np.float64)
        assert transition.ndim == 2 and transition.shape[0] == transition.shape[1]
        assert emission.shape == (transition.shape[0], N_EMISSIONS)
        hmm.groups = [Group(g.kind, g.name, list(g.states), list(g.insertions)) for g in groups]
        hmm._transition = transition
        hmm._emission = emission
        hmm.finalize_initialization()
        return hmm

    # ------------------------------------------------------------------------------
    # Read-only accessors
    # ------------------------------------------------------------------------------

    @property
    def transition(self) -> np.ndarray:
        """The transition matrix, shape (n_states, n_states), read-only."""
        view = self._transition.view()
        view.flags.writeable = False
        return view

    @property
    def emission(self) -> np.ndarray:
        """The emission matrix, shape (n_states, 4), read-only."""
        view = self._emission.view()
        view.flags.writeable = False
        return view

    @property
    def n_states(self) -> int:
        return self._transition.shape[0]

    @property
    def n_groups(self) -> int:
        return len(self.groups)

    @property
    def n_motifs(self) -> int:
        return len(self.motif_groups())

    @property
    def pred(self) -> list[list[int]]:
        return self._pred

    @property
    def succ(self) -> list[list[int]]:
        return self._succ

    @property
    def group_ids(self) -> np.ndarray:
        return self._group_ids

    def motif_groups(self) -> list[int]:
        return [i for i, g in enumerate(self.groups) if g.kind == GroupKind.MOTIF]

    def is_motif_group(self, group_idx: int) -> bool:
        return self.groups[group_idx].kind == GroupKind.MOTIF

    def is_motif_state(self, state: int) -> bool:
        return self.is_motif_group(self._group_ids[state])

    def group_name(self, group_idx: int) -> str:
        return self.groups[group_idx].name

    def chain_states(self, group_idx: int) -> list[int]:
        return self.groups[group_idx].chain

    def motif_length(self, group_idx: int) -> int:
        """Number of chain (padding and core) states of a motif."""
        return len(self.groups[group_idx].chain)

    def motif_states(self, group_indices) -> list[int]:
        """Sorted states of the given groups."""
        states = set()
        for idx in group_indices:
            states.update(self.groups[idx].states)
        return sorted(states)

    def motif_restarts(self, group_indices) -> list[tuple[int, int]]:
        """(last, first) chain transitions by which a motif follows itself back to back."""
        return [(self.groups[idx].chain[-1], self.groups[idx].chain[0]) for idx in group_indices]

    def emission_table(self) -> np.ndarray:
        """Emission probabilities of all IUPAC symbols, shape (n_states, n_symbols)."""
        return emission_lookup(self._emission)

    def clone(self) -> ProfileHMM:
        """Return an independent deep copy."""
        return copy.deepcopy(self)

    def set_parameters(self, transition: np.ndarray, emission: np.ndarray) -> None:
        """Replace the parameter matrices, e.g. after a training step."""
        assert transition.shape == self._transition.shape
        assert emission.shape == self._emission.shape
        self._transition = np.array(transition, dtype=np.float64)
        self._emission = np.array(emission, dtype=np.float64)
        self.normalize_transition()
        self.normalize_emission()
        self.finalize_initialization()

    # ------------------------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------------------------

    def normalize_transition(self) -> None:
        normalize_rows(self._transition)

    def normalize_emission(self) -> None:
        normalize_rows(self._emission)
        self._emission[START_STATE] = 0.0

    def initialize_pred_succ(self) -> None:
        """Initialize the predecessor and successor adjacency lists."""
        nz = self._transition > 0
        self._succ = [list(np.flatnonzero(nz[i])) for i in range(self.n_states)]
        self._pred = [list(np.flatnonzero(nz[:, j])) for j in range(self.n_states)]

    def finalize_initialization(self) -> None:
        """Refresh group ids and adjacency caches, and check parameter consistency."""
        group_ids = np.full(self.n_states, -1, dtype=np.int64)
        for idx, group in enumerate(self.groups):
            for s in group.states:
                assert group_ids[s] == -1, f"State {s} belongs to more than one group"
                group_ids[s] = idx
        assert np.all(group_ids >= 0), "Every state must belong to a group"
        self._group_ids = group_ids
        self.initialize_pred_succ()
        if not self.check_consistency():
            logger.warning("HMM parameters are not consistent after initialization")

    def add_motif(
        self,
        profile,
        expected_length: float,
        prior_weight: float = 1.0,
        name: str | None = None,
        insertions=(),
        self_transition: bool = False,
        pad_left: int = 0,
        pad_right: int = 0,
        alpha: float = 0.03,
    ) -> int:
        """Append a motif group after all current states.

        Parameters
        ----------
        profile : np.ndarray or str
            Emission matrix of the core states, shape (w, 4), or an IUPAC string from
            which it is derived with :func:`iupac_profile`
        expected_length : float
            Expected number of background positions before an occurrence
        prior_weight : float, default=1.0
            Prior expected number of occurrences within ``expected_length`` positions
        name : str, optional
            Group name; defaults to the IUPAC string or "motif<idx>"
        insertions : iterable of int
            1-based core positions after which an insertion state branches off
        self_transition : bool, default=False
            Allow insertion states to repeat, permitting variable-length insertions
        pad_left, pad_right : int
            Number of uniform padding states flanking the core
        alpha : float, default=0.03
            Probability of excluded nucleotides when ``profile`` is an IUPAC string

        Returns
        -------
        motif_idx : int
            Index of the new group
        """
        if isinstance(profile, str):
            if name is None:
                name = profile
            profile = iupac_profile(profile, alpha)
        e = normalize_rows(np.array(profile, dtype=np.float64))
        assert e.ndim == 2 and e.shape[1] == N_EMISSIONS and e.shape[0] > 0
        n_core = e.shape[0]
        insertions = sorted(insertions)
        for pos in insertions:
            if pos <= 0 or pos >= n_core:
                raise InsertionNotInsideMotifError(pos)

        motif_idx = len(self.groups)
        if name is None:
            name = f"motif{motif_idx}"
        logger.debug(f"Adding motif {name} of length {n_core} with insertions {insertions}")

        n_padded = pad_left + n_core + pad_right
        n_total = n_padded + len(insertions)
        n_prev = self.n_states
        first = n_prev
        last = first + n_padded - 1
        first_core = first + pad_left
        first_insertion = last + 1

        transition = np.zeros((n_prev + n_total, n_prev + n_total))
        transition[:n_prev, :n_prev] = self._transition
        emission = np.zeros((n_prev + n_total, N_EMISSIONS))
        emission[:n_prev] = self._emission
        emission[first:first + n_total] = 1.0 / N_EMISSIONS
        emission[first_core:first_core + n_core] = e

        q = min(prior_weight / expected_length, 0.5)
        transition[BG_STATE, first] = q
        transition[BG_STATE, BG_STATE] -= q
        transition[START_STATE, first] = q
        transition[START_STATE, BG_STATE] -= q
        for i in range(first, last):
            transition[i, i + 1] = 1.0
        transition[last, BG_STATE] = 1.0 - q
        transition[last, first] = q

        # insertions are given by the 1-based core position after which they are placed
        for k, pos in enumerate(insertions):
            src = first_core + pos - 1
            ins = first_insertion + k
            transition[src] *= 1.0 - INSERT_TRANSITION_PROBABILITY
            transition[src, ins] = INSERT_TRANSITION_PROBABILITY
            transition[ins, src + 1] = 1.0
            if self_transition:
                transition[ins, ins] = 1.0

        states = list(range(first, first + n_total))
        self.groups.append(Group(GroupKind.MOTIF, name, states, list(range(first_insertion, first_insertion + len(insertions)))))
        self._transition = transition
        self._emission = emission
        self.normalize_transition()
        self.normalize_emission()
        self.finalize_initialization()
        return motif_idx

    def add_seed(self, seed: str, options, collection=None, name: str | None = None, insertions=()) -> int:
        """Add a motif from an IUPAC seed with the initialization options.

        ``alpha``, ``prior_weight``, ``pad_left`` and ``pad_right`` are taken from the
        options. The expected length is ``options.expected_length`` or, if that is not
        set, the mean length of the sequences in ``collection``.
        """
        expected_length = options.expected_length
        if expected_length is None:
            assert collection is not None, "Need a collection to derive the expected length"
            lengths = [len(s) for s in collection.sequences()]
            assert lengths, "Need at least one sequence to derive the expected length"
            expected_length = float(np.mean(lengths))
        return self.add_motif(
            seed,
            expected_length,
            prior_weight=options.prior_weight,
            name=name,
            insertions=insertions,
            pad_left=options.pad_left,
            pad_right=options.pad_right,
            alpha=options.alpha,
        )

    def add_motifs(self, other: ProfileHMM, only_additional: bool = False, groups=None) -> list[int]:
        """Add the motif groups of another HMM.

        The internal transitions and emissions of each group are copied verbatim; the
        transitions from and to the background and start states are taken from the
        other HMM and subtracted from the background and start self-continuations.

        Parameters
        ----------
        other : ProfileHMM
            HMM whose motifs to add
        only_additional : bool, default=False
            Assume both HMMs are identical except for additional groups in ``other``,
            and add only those
        groups : iterable of int, optional
            Restrict adding to these group indices of ``other``

        Returns
        -------
        added : list of int
            Indices of the new groups
        """
        added = []
        for idx, group in enumerate(other.groups):
            if only_additional and idx < len(self.groups):
                logger.info(f"Skip adding motif group {group.name}")
                continue
            if group.kind != GroupKind.MOTIF or (groups is not None and idx not in groups):
                continue
            logger.info(f"Adding motif group {group.name}: {other.consensus(idx)}")
            states = group.states
            n_prev = self.n_states
            m = len(states)
            new_index = {s: n_prev + k for k, s in enumerate(states)}

            transition = np.zeros((n_prev + m, n_prev + m))
            transition[:n_prev, :n_prev] = self._transition
            transition[n_prev:, n_prev:] = other._transition[np.ix_(states, states)]
            emission = np.zeros((n_prev + m, N_EMISSIONS))
            emission[:n_prev] = self._emission
            emission[n_prev:] = other._emission[states]
            for s in states:
                transition[new_index[s], BG_STATE] = other._transition[s, BG_STATE]
                for source in (BG_STATE, START_STATE):
                    q = other._transition[source, s]
                    if q > 0:
                        transition[source, new_index[s]] = q
                        transition[source, BG_STATE] -= q

            self.groups.append(
                Group(GroupKind.MOTIF, group.name, [new_index[s] for s in states], [new_index[s] for s in group.insertions])
            )
            self._transition = transition
            self._emission = emission
            added.append(len(self.groups) - 1)
        self.normalize_transition()
        self.normalize_emission()
        self.finalize_initialization()
        return added

    def sub_model(self, group_indices) -> ProfileHMM:
        """Extract a new HMM holding only the given motif groups."""
        sub = ProfileHMM(self.pseudo_count)
        sub._emission[BG_STATE] = self._emission[BG_STATE]
        sub.add_motifs(self, groups=set(group_indices))
        return sub

    def add_revcomp_motifs(self) -> tuple[ProfileHMM, dict[int, int]]:
        """Add a reverse complementary copy of every motif group.

        The chain is reversed by time-reversal of its internal Markov chain, so
        insertion branches keep their path probabilities. Emissions are complemented.

        Returns
        -------
        hmm : ProfileHMM
            A new HMM with the additional groups
        mapping : dict
            Maps each original motif group index to its reverse complementary group
        """
        hmm = self.clone()
        mapping = {}
        for idx in self.motif_groups():
            group = self.groups[idx]
            chain = group.chain
            states = group.states
            first, last = chain[0], chain[-1]
            local = {s: k for k, s in enumerate(states)}
            Q = self._transition[np.ix_(states, states)].copy()
            Q[local[last], local[first]] = 0.0
            start = np.zeros(len(states))
            start[local[first]] = 1.0
            visits = np.linalg.solve((np.eye(len(states)) - Q).T, start)
            R = np.zeros_like(Q)
            for i in range(len(states)):
                for j in range(len(states)):
                    if Q[i, j] > 0 and visits[j] > 0:
                        R[j, i] = visits[i] * Q[i, j] / visits[j]

            # new order: reversed chain followed by the insertion states
            order = chain[::-1] + list(group.insertions)
            n_prev = hmm.n_states
            m = len(order)
            new_index = {s: n_prev + k for k, s in enumerate(order)}
            transition = np.zeros((n_prev + m, n_prev + m))
            transition[:n_prev, :n_prev] = hmm._transition
            for i in states:
                for j in states:
                    transition[new_index[i], new_index[j]] = R[local[i], local[j]]
            q_bg = self._transition[BG_STATE, first]
            q_start = self._transition[START_STATE, first]
            transition[BG_STATE, new_index[last]] = q_bg
            transition[BG_STATE, BG_STATE] -= q_bg
            transition[START_STATE, new_index[last]] = q_start
            transition[START_STATE, BG_STATE] -= q_start
            transition[new_index[first], BG_STATE] = self._transition[last, BG_STATE]
            transition[new_index[first], new_index[last]] = self._transition[last, first]
            emission = np.zeros((n_prev + m, N_EMISSIONS))
            emission[:n_prev] = hmm._emission
            for s in order:
                # complement: acgt -> tgca reverses the column order
                emission[new_index[s]] = self._emission[s, ::-1]
            hmm.groups.append(
                Group(GroupKind.MOTIF, f"{group.name}_rc", list(range(n_prev, n_prev + m)), [new_index[s] for s in group.insertions])
            )
            hmm._transition = transition
            hmm._emission = emission
            mapping[idx] = len(hmm.groups) - 1
        hmm.normalize_transition()
        hmm.normalize_emission()
        hmm.finalize_initialization()
        return hmm, mapping

    # ------------------------------------------------------------------------------
    # Consistency checking
    # ------------------------------------------------------------------------------

    def check_consistency_transitions(self, eps: float = 1e-6) -> bool:
        T = self._transition
        if np.any(T < 0) or not np.all(np.isfinite(T)):
            return False
        sums = T.sum(1)
        return bool(np.all((sums == 0) | (np.abs(sums - 1) <= eps)))

    def check_consistency_emissions(self, eps: float = 1e-6) -> bool:
        E = self._emission[START_STATE + 1:]
        if np.any(E < 0) or not np.all(np.isfinite(E)):
            return False
        sums = E.sum(1)
        return bool(np.all((sums == 0) | (np.abs(sums - 1) <= eps)))

    def check_consistency(self, eps: float = 1e-6) -> bool:
        return self.check_consistency_transitions(eps) and self.check_consistency_emissions(eps)

    # ------------------------------------------------------------------------------
    # Probabilistic evaluation of single sequences
    # ------------------------------------------------------------------------------

    def forward(self, x: np.ndarray):
        """Scaled forward messages and scale vector of a sequence."""
        return forward_scaled(self._transition, self.emission_table(), x)

    def backward(self, x: np.ndarray, scale: np.ndarray) -> np.ndarray:
        """Backward messages of a sequence, scaled by the given forward scale vector."""
        return backward_prescaled(self._transition, self.emission_table(), x, scale)

    def log_likelihood(self, data) -> float:
        """Natural log-likelihood of an encoded sequence.

        Also accepts a Sequence, SeqSet, Contrast or Collection, for which the
        weighted sum over all contained sequences is returned.
        """
        if isinstance(data, np.ndarray):
            _, scale = self.forward(data)
            return log_likelihood_from_scale(scale)
        if hasattr(data, "codes"):
            return data.weight * self.log_likelihood(data.codes)
        return float(sum(self.log_likelihood(item) for item in data))

    def viterbi(self, x: np.ndarray):
        """Most probable state path and its natural log probability."""
        return viterbi(self._transition, self.emission_table(), x)

    def posterior_atleast_one(self, x: np.ndarray, present_groups):
        """Log-likelihood and posterior probability of at least one occurrence."""
        return posterior_atleast_one(self._transition, self.emission_table(), x, self.motif_states(present_groups))

    def pair_posterior_atleast_one(self, x: np.ndarray, present_groups, previous_groups):
        return pair_posterior_atleast_one(
            self._transition,
            self.emission_table(),
            x,
            self.motif_states(present_groups),
            self.motif_states(previous_groups),
        )

    def expected_posterior(self, x: np.ndarray, present_groups) -> float:
        """Expected number of occurrences of the given motif groups."""
        return expected_posterior(
            self._transition,
            self.emission_table(),
            x,
            self.motif_states(present_groups),
            self.motif_restarts(present_groups),
        )

    def motif_occurrences(self, path: np.ndarray, group_idx: int) -> list[tuple[int, int]]:
        """Occurrences of a motif in a state path as (start, end) position pairs, end exclusive.

        Occurrences are maximal runs of the group's states; a step from the last
        chain state to the first chain state starts a new occurrence.
        """
        group = self.groups[group_idx]
        members = set(group.states)
        first, last = group.chain[0], group.chain[-1]
        occurrences = []
        start = None
        prev = -1
        for t, s in enumerate(path):
            inside = s in members
            if start is not None and (not inside or (s == first and prev == last)):
                occurrences.append((start, t))
                start = None
            if inside and start is None:
                start = t
            prev = s
        if start is not None:
            occurrences.append((start, len(path)))
        return occurrences

    def count_motif(self, path: np.ndarray, group_idx: int) -> int:
        """Number of occurrences of a motif in a state path."""
        return len(self.motif_occurrences(path, group_idx))

    def sample(self, length: int, rng: np.random.Generator):
        """Sample a sequence and its state path from the HMM.

        Returns
        -------
        x : np.ndarray
            Sampled symbols, shape (length,)
        path : np.ndarray
            Sampled states, shape (length,)
        """
        assert length > 0
        x = np.zeros(length, dtype=np.int64)
        path = np.zeros(length, dtype=np.int64)
        state = START_STATE
        for t in range(length):
            state = rng.choice(self.n_states, p=self._transition[state])
            path[t] = state
            x[t] = rng.choice(N_EMISSIONS, p=self._emission[state])
        return x, path

    # ------------------------------------------------------------------------------
    # Summary statistics
    # ------------------------------------------------------------------------------

    def information_content(self, group_idx: int) -> float:
        """Emission information content of a motif in bits."""
        E = self._emission[self.chain_states(group_idx)]
        with np.errstate(divide="ignore", invalid="ignore"):
            plogp = np.where(E > 0, E * np.log2(E), 0.0)
        return float((np.log2(N_EMISSIONS) + plogp.sum(1)).sum())

    def consensus(self, group_idx: int, threshold: float = 0.1) -> str:
        """IUPAC consensus of the chain states of a group."""
        return consensus_of_matrix(self._emission[self.chain_states(group_idx)], threshold)

    def n_parameters(self) -> int:
        """Number of free parameters of the HMM."""
        n = 0
        for i in range(self.n_states):
            k = np.count_nonzero(self._transition[i])
            n += max(0, k - 1)
        return n + (self.n_states - 1) * (N_EMISSIONS - 1)

    def non_zero_parameters(self, transition_rows, emission_rows) -> int:
        """Number of free parameters in the given transition and emission rows."""
        n = 0
        for i in transition_rows:
            n += max(0, np.count_nonzero(self._transition[i]) - 1)
        for i in emission_rows:
            n += max(0, np.count_nonzero(self._emission[i]) - 1)
        return n

    def path_to_string_state(self, path) -> str:
        return ",".join(str(int(s)) for s in path)

    def path_to_string_group(self, path) -> str:
        """One character per position: '.' for background, letters for motifs."""
        motifs = self.motif_groups()
        chars = []
        for s in path:
            g = self._group_ids[s]
            chars.append(chr(ord("A") + motifs.index(g) % 26) if g in motifs else ".")
        return "".join(chars)

    def to_dot(self, minimum_transition: float = 0.01) -> str:
        """Graphviz representation of the transitions above the given probability."""
        lines = ["digraph HMM {", "  rankdir=LR;"]
        for idx, group in enumerate(self.groups):
            lines.append(f"  subgraph cluster_{idx} {{")
            lines.append(f'    label="{group.name}";')
            for s in group.states:
                if group.kind == GroupKind.MOTIF:
                    label = consensus_of_matrix(self._emission[[s]])
                else:
                    label = group.name
                lines.append(f'    {s} [label="{s}: {label}"];')
            lines.append("  }")
        for i in range(self.n_states):
            for j in self._succ[i]:
                if self._transition[i, j] >= minimum_transition:
                    lines.append(f'  {i} -> {j} [label="{self._transition[i, j]:.3g}"];')
        lines.append("}")
        return "\n".join(lines)

    def __repr__(self) -> str:
        motifs = ", ".join(f"{self.groups[i].name}={self.consensus(i)}" for i in self.motif_groups())
        return f"ProfileHMM(n_states={self.n_states}, motifs=[{motifs}])"

    # ------------------------------------------------------------------------------
    # Structural mutations for MCMC sampling
    # ------------------------------------------------------------------------------

    def _insert_state(self, pos: int, group_idx: int) -> None:
        """Allocate fresh matrices with a new all-zero state at index pos."""
        n = self.n_states
        idx = np.r_[0:pos, pos + 1:n + 1]
        transition = np.zeros((n + 1, n + 1))
        transition[np.ix_(idx, idx)] = self._transition
        emission = np.zeros((n + 1, N_EMISSIONS))
        emission[idx] = self._emission
        for group in self.groups:
            group.states = [s + (s >= pos) for s in group.states]
            group.insertions = [s + (s >= pos) for s in group.insertions]
        self.groups[group_idx].states = sorted(self.groups[group_idx].states + [pos])
        self._transition = transition
        self._emission = emission

    def _remove_state(self, pos: int) -> None:
        """Allocate fresh matrices without the state at index pos."""
        keep = np.r_[0:pos, pos + 1:self.n_states]
        self._transition = self._transition[np.ix_(keep, keep)].copy()
        self._emission = self._emission[keep].copy()
        for group in self.groups:
            group.states = [s - (s > pos) for s in group.states if s != pos]
            group.insertions = [s - (s > pos) for s in group.insertions if s != pos]

    def add_column(self, group_idx: int, at_start: bool, e) -> None:
        """Add a chain state with emissions e at the 5' or 3' end of a motif.

        At the 5' end the new state takes over all transitions into the former first
        state and continues into it. At the 3' end the former last state continues
        into the new state, which takes over its outgoing transitions.
        """
        chain = self.chain_states(group_idx)
        if at_start:
            new = chain[0]
            self._insert_state(new, group_idx)
            old_first = new + 1
            T = self._transition
            T[:, new] = T[:, old_first]
            T[:, old_first] = 0.0
            T[new, :] = 0.0
            T[new, old_first] = 1.0
        else:
            new = chain[-1] + 1
            self._insert_state(new, group_idx)
            old_last = new - 1
            T = self._transition
            T[new, :] = T[old_last, :]
            T[old_last, :] = 0.0
            T[old_last, new] = 1.0
        self._emission[new] = e
        self.normalize_transition()
        self.normalize_emission()

    def del_column(self, group_idx: int, at_start: bool) -> None:
        """Remove the first or last chain state of a motif.

        At the 5' end, transitions into the removed state are redirected to its
        successor. At the 3' end, the predecessor takes over the outgoing transitions.
        """
        chain = self.chain_states(group_idx)
        assert len(chain) > 1, "Can not delete the only state of a motif"
        T = self._transition
        if at_start:
            removed, successor = chain[0], chain[1]
            T[:, successor] += T[:, removed]
        else:
            removed, predecessor = chain[-1], chain[-2]
            T[predecessor, :] = T[removed, :]
        self._remove_state(removed)
        self.normalize_transition()
        self.normalize_emission()

    def deletable_columns(self, group_idx: int, at_start: bool) -> int:
        """Number of chain states that can be deleted from one end of a motif.

        States that are the source or target of an insertion branch are not deletable,
        and at least one chain state remains.
        """
        group = self.groups[group_idx]
        chain = group.chain if at_start else group.chain[::-1]
        insertions = group.insertions
        n = 0
        for s in chain[:-1]:
            if any(self._transition[s, i] > 0 or self._transition[i, s] > 0 for i in insertions):
                break
            n += 1
        return n

    def add_columns(self, n: int, rng: np.random.Generator, group_idx: int | None = None) -> None:
        """Add n columns with uniformly drawn emissions at a random end of a motif."""
        if group_idx is None:
            group_idx = int(rng.choice(self.motif_groups()))
        at_start = bool(rng.integers(2) == 0)
        logger.debug(f"Adding {n} columns at the {'beginning' if at_start else 'end'} of motif {group_idx}")
        for _ in range(n):
            self.add_column(group_idx, at_start, rng.uniform(size=N_EMISSIONS))
        self.finalize_initialization()

    def del_columns(self, n: int, rng: np.random.Generator, group_idx: int | None = None) -> None:
        """Delete n columns at a random end of a motif where that many are deletable."""
        if group_idx is None:
            group_idx = int(rng.choice(self.motif_groups()))
        ends = [at_start for at_start in (True, False) if self.deletable_columns(group_idx, at_start) >= n]
        assert ends, f"Can not delete {n} columns from motif {group_idx}"
        at_start = ends[int(rng.integers(len(ends)))]
        logger.debug(f"Deleting {n} columns at the {'beginning' if at_start else 'end'} of motif {group_idx}")
        for _ in range(n):
            self.del_column(group_idx, at_start)
        self.finalize_initialization()

    def swap_columns(self, rng: np.random.Generator, group_idx: int | None = None) -> None:
        """Swap the emissions of two random chain states of a motif."""
        if group_idx is None:
            group_idx = int(rng.choice(self.motif_groups()))
        chain = self.chain_states(group_idx)
        i, j = rng.choice(chain, size=2, replace=False)
        logger.debug(f"Swapping columns {i} and {j}")
        self._emission[[i, j]] = self._emission[[j, i]]

    def modify_column(self, rng: np.random.Generator, group_idx: int | None = None) -> None:
        """Move a random fraction of emission mass between two nucleotides of a state."""
        if group_idx is None:
            group_idx = int(rng.choice(self.motif_groups()))
        col = int(rng.choice(self.groups[group_idx].states))
        i, j = rng.choice(N_EMISSIONS, size=2, replace=False)
        logger.debug(f"Modifying emissions {ALPHABET[i]} and {ALPHABET[j]} in column {col}")
        amount = self._emission[col, i] * rng.uniform()
        self._emission[col, i] -= amount
        self._emission[col, j] += amount

    def branching_states(self) -> list[int]:
        """States with at least two outgoing transitions."""
        return [i for i in range(self.n_states) if np.count_nonzero(self._transition[i]) >= 2]

    def modify_transition(self, rng: np.random.Generator, eps: float = 1e-6) -> None:
        """Move a random fraction of transition mass between two edges of a state.

        No edge drops below eps, so no transition is absorbed to zero.
        """
        candidates = self.branching_states()
        assert candidates, "No state has more than one outgoing transition"
        row = int(rng.choice(candidates))
        present = np.flatnonzero(self._transition[row] > 0)
        i, j = rng.choice(present, size=2, replace=False)
        logger.debug(f"Modifying transitions {i} and {j} of state {row}")
        T = self._transition
        amount = T[row, i] * rng.uniform()
        T[row, i] = max(eps, T[row, i] - amount)
        T[row, j] += amount
        T[row] /= T[row].sum()
