"""Synthetic sequence generation with embedded motif occurrences."""

from __future__ import annotations

import numpy as np
from numpy.typing import ArrayLike

from .data import Collection, Contrast, SeqSet, Sequence
from .utils import ALPHABET, encode, iupac_support


def random_sequence(length: int, rng: np.random.Generator, p: ArrayLike | None = None) -> str:
    """Draw an i.i.d. nucleotide string with base composition p (uniform by default)."""
    codes = rng.choice(len(ALPHABET), size=length, p=p)
    return "".join(ALPHABET[c] for c in codes)


def datagen_embedded_motif(
    motif: str,
    n_seqs: int = 50,
    length: int = 100,
    occurrence_rate: float = 1.0,
    seed: int = 42,
) -> tuple[list[str], list[int | None]]:
    """Generate background sequences, some of which carry one occurrence of a motif.

    Parameters
    ----------
    motif : str
        IUPAC string of the motif; degenerate positions are filled by uniform draws
        from the consistent nucleotides
    n_seqs : int, default=50
        Number of sequences
    length : int, default=100
        Length of every sequence
    occurrence_rate : float, default=1.0
        Fraction of sequences carrying an occurrence
    seed : int, default=42
        Random seed for reproducibility

    Returns
    -------
    seqs : list of str
        Generated sequences
    positions : list of int or None
        0-based start position of the embedded occurrence, or None
    """
    assert len(motif) <= length
    rng = np.random.default_rng(seed)
    seqs = []
    positions = []
    for _ in range(n_seqs):
        seq = random_sequence(length, rng)
        if rng.uniform() < occurrence_rate:
            site = "".join(ALPHABET[rng.choice(iupac_support(c))] for c in motif)
            pos = int(rng.integers(length - len(motif) + 1))
            seq = seq[:pos] + site + seq[pos + len(motif):]
            positions.append(pos)
        else:
            positions.append(None)
        seqs.append(seq)
    return seqs, positions


def datagen_contrast(
    motif: str,
    n_seqs: int = 50,
    length: int = 100,
    signal_rate: float = 1.0,
    control_rate: float = 0.0,
    seed: int = 42,
) -> tuple[Collection, list[int | None]]:
    """Generate a signal set enriched for a motif and a control set.

    Returns
    -------
    collection : Collection
        One contrast with a signal and a control set
    positions : list of int or None
        Occurrence positions in the signal sequences
    """
    signal, positions = datagen_embedded_motif(motif, n_seqs, length, signal_rate, seed)
    control, _ = datagen_embedded_motif(motif, n_seqs, length, control_rate, seed + 1)
    sets = [
        SeqSet("signal", [Sequence(f"signal_{i}", encode(s)) for i, s in enumerate(signal)], True),
        SeqSet("control", [Sequence(f"control_{i}", encode(s)) for i, s in enumerate(control)], False),
    ]
    return Collection([Contrast("contrast", sets)]), positions
