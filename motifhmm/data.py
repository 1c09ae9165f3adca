"""Sequence containers: sequences, sets, contrasts and collections."""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np

from .utils import decode, encode, validate_seq


@dataclass
class Sequence:
    """An encoded nucleotide sequence.

    Attributes
    ----------
    name : str
        Sequence identifier
    codes : np.ndarray
        Symbol codes, shape (L,), dtype int64
    weight : float
        Weight of the sequence in all sums over data
    """

    name: str
    codes: np.ndarray
    weight: float = 1.0

    def __post_init__(self):
        validate_seq(self.codes)

    @classmethod
    def from_string(cls, name: str, seq: str, weight: float = 1.0) -> Sequence:
        return cls(name, encode(seq), weight)

    def __len__(self) -> int:
        return len(self.codes)

    @property
    def string(self) -> str:
        return decode(self.codes)


@dataclass
class SeqSet:
    """A set of sequences sharing a condition label.

    The order of the sequences is their rank, used by rank information.
    """

    name: str
    sequences: list[Sequence] = field(default_factory=list)
    is_signal: bool = True

    @classmethod
    def from_strings(cls, name: str, seqs, is_signal: bool = True) -> SeqSet:
        return cls(
            name,
            [Sequence.from_string(f"{name}_{i}", s) for i, s in enumerate(seqs)],
            is_signal,
        )

    def __len__(self) -> int:
        return len(self.sequences)

    def __iter__(self):
        return iter(self.sequences)

    @property
    def total_weight(self) -> float:
        return float(sum(s.weight for s in self.sequences))


@dataclass
class Contrast:
    """A labeled grouping of sequence sets, e.g. signal vs. control."""

    name: str
    sets: list[SeqSet] = field(default_factory=list)

    def __iter__(self):
        return iter(self.sets)

    @property
    def n_sequences(self) -> int:
        return sum(len(s) for s in self.sets)

    def signal_sets(self) -> list[SeqSet]:
        return [s for s in self.sets if s.is_signal]

    def control_sets(self) -> list[SeqSet]:
        return [s for s in self.sets if not s.is_signal]


@dataclass
class Collection:
    """All data used for training or evaluation."""

    contrasts: list[Contrast] = field(default_factory=list)

    @classmethod
    def from_strings(cls, signal, control=None, name: str = "contrast") -> Collection:
        """Build a single-contrast collection from lists of strings."""
        sets = [SeqSet.from_strings("signal", signal, True)]
        if control is not None:
            sets.append(SeqSet.from_strings("control", control, False))
        return cls([Contrast(name, sets)])

    def __iter__(self):
        return iter(self.contrasts)

    @property
    def n_sequences(self) -> int:
        return sum(c.n_sequences for c in self.contrasts)

    def sequences(self):
        """Iterate over all sequences of all sets of all contrasts."""
        for contrast in self.contrasts:
            for seqset in contrast:
                yield from seqset
