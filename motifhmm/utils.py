"""Utility functions: nucleotide alphabet, matrix normalization and parallel helpers."""

from __future__ import annotations

import logging

import numpy as np
from joblib import Parallel, delayed

from .exceptions import InvalidNucleotideCodeError

#: The four nucleotides, in emission-column order.
ALPHABET = "acgt"
#: Number of emission symbols of every emitting state.
N_EMISSIONS = 4
#: All symbols a sequence may contain; indices 4.. are degenerate IUPAC codes.
IUPAC_CODES = "acgtryswkmbdhvn"
N_SYMBOLS = len(IUPAC_CODES)

_IUPAC_MEMBERS = {
    "a": "a",
    "c": "c",
    "g": "g",
    "t": "t",
    "r": "ag",
    "y": "ct",
    "s": "cg",
    "w": "at",
    "k": "gt",
    "m": "ac",
    "b": "cgt",
    "d": "agt",
    "h": "act",
    "v": "acg",
    "n": "acgt",
}

#: SUPPORT[code, k] is True if nucleotide k is consistent with symbol code.
SUPPORT = np.zeros((N_SYMBOLS, N_EMISSIONS), dtype=np.bool_)
for _code, _char in enumerate(IUPAC_CODES):
    for _nucl in _IUPAC_MEMBERS[_char]:
        SUPPORT[_code, ALPHABET.index(_nucl)] = True

_CHAR_TO_CODE = {c: i for i, c in enumerate(IUPAC_CODES)}
_CHAR_TO_CODE["u"] = _CHAR_TO_CODE["t"]
_SET_TO_CHAR = {frozenset(members): c for c, members in _IUPAC_MEMBERS.items()}
_COMPLEMENT = str.maketrans("acgtryswkmbdhvn", "tgcayrswmkvhdbn")


def encode(seq: str) -> np.ndarray:
    """Encode a nucleotide string into an int64 symbol array."""
    try:
        return np.array([_CHAR_TO_CODE[c] for c in seq.lower()], dtype=np.int64)
    except KeyError as e:
        raise InvalidNucleotideCodeError(e.args[0]) from None


def decode(x: np.ndarray) -> str:
    """Decode an int64 symbol array into a lower case nucleotide string."""
    return "".join(IUPAC_CODES[i] for i in x)


def iupac_support(char: str) -> list[int]:
    """Return the nucleotide indices consistent with the IUPAC character."""
    c = char.lower()
    if c == "u":
        c = "t"
    if c not in _IUPAC_MEMBERS:
        raise InvalidNucleotideCodeError(char)
    return [ALPHABET.index(n) for n in _IUPAC_MEMBERS[c]]


def iupac_char(members) -> str:
    """Return the IUPAC character covering the given nucleotide indices."""
    return _SET_TO_CHAR[frozenset(ALPHABET[k] for k in members)]


def reverse_complement(seq: str) -> str:
    return seq.lower().translate(_COMPLEMENT)[::-1]


def validate_seq(x: np.ndarray) -> None:
    """Validate an encoded input sequence"""
    assert len(x.shape) == 1, "Flatten your array first"
    assert x.dtype == np.int64
    if len(x) > 0:
        assert 0 <= x.min(), "Symbols inconsistent with the nucleotide alphabet"
        assert x.max() < N_SYMBOLS, "Symbols inconsistent with the nucleotide alphabet"
    return None


def normalize_rows(m: np.ndarray) -> np.ndarray:
    """Normalize the rows of a matrix in-place to sum to one.

    Residual negative entries are clamped to zero first. Rows summing to zero are
    left as zero rows; they mark unreachable states.
    """
    np.maximum(m, 0.0, out=m)
    norm = m.sum(1, keepdims=True)
    norm[norm == 0] = 1
    m /= norm
    return m


def emission_lookup(E: np.ndarray, start_state: int = 0) -> np.ndarray:
    """Expand an emission matrix to all IUPAC symbols.

    Parameters
    ----------
    E : np.ndarray
        Emission matrix, shape (n_states, 4)
    start_state : int, default=0
        The non-emitting state; its row is set to one.

    Returns
    -------
    E_ext : np.ndarray
        Emission probabilities of every symbol, shape (n_states, N_SYMBOLS)
    """
    E_ext = E.dot(SUPPORT.T.astype(E.dtype))
    E_ext[start_state] = 1.0
    return np.ascontiguousarray(E_ext)


def parallel_map(func, items, n_jobs: int = 1) -> list:
    """Apply func to every item, fanning out over threads when n_jobs != 1.

    The numba kernels release the GIL, so threads give real parallelism. Results are
    returned in input order.
    """
    if n_jobs == 1:
        return [func(item) for item in items]
    return Parallel(n_jobs=n_jobs, prefer="threads")(delayed(func)(item) for item in items)


def setup_logging(verbose: bool = False) -> None:
    """Configure the root logger for command line usage."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    if not verbose:
        logging.getLogger("numba").setLevel(logging.WARNING)
