"""Versioned plain text format of HMM parameters.

A parameter file consists of comment lines starting with '#', the format version and
pseudo count, one block per group, and the transition and emission matrices::

    # motifhmm parameter file
    Format version = 1
    Pseudo count = 1.0
    Groups = 3
    Group 0
    Kind = Special
    Name = Special
    States = 0
    Insertions =
    ...
    Transition matrix = 3 3
    0.0 0.99 0.01
    ...
    Emission matrix = 3 4
    ...

Floating point numbers are written with ``repr`` so that reading a file back yields
identical matrices.
"""

from __future__ import annotations

import logging
from pathlib import Path

import numpy as np

from .exceptions import (
    ParameterFileExistenceError,
    ParameterFileReadError,
    ParameterFileSyntaxError,
    UnsupportedVersionError,
)
from .model import Group, GroupKind, ProfileHMM
from .utils import N_EMISSIONS

logger = logging.getLogger(__name__)

FORMAT_VERSION = 1


def serialize(model: ProfileHMM, stream, exec_info=None) -> None:
    """Write the model parameters to a text stream.

    Parameters
    ----------
    model : ProfileHMM
    stream : file-like
        Text stream to write to
    exec_info : iterable of str, optional
        Lines written as comments into the header, e.g. the command line
    """
    stream.write("# motifhmm parameter file\n")
    for line in exec_info or ():
        stream.write(f"# {line}\n")
    stream.write(f"Format version = {FORMAT_VERSION}\n")
    stream.write(f"Pseudo count = {model.pseudo_count!r}\n")
    stream.write(f"Groups = {model.n_groups}\n")
    for idx, group in enumerate(model.groups):
        stream.write(f"Group {idx}\n")
        stream.write(f"Kind = {group.kind.value}\n")
        stream.write(f"Name = {group.name}\n")
        stream.write(f"States = {' '.join(str(s) for s in group.states)}\n")
        stream.write(f"Insertions = {' '.join(str(s) for s in group.insertions)}\n")
    for label, matrix in (("Transition", model.transition), ("Emission", model.emission)):
        stream.write(f"{label} matrix = {matrix.shape[0]} {matrix.shape[1]}\n")
        for row in matrix:
            stream.write(" ".join(repr(float(v)) for v in row) + "\n")


class _Lines:
    """Iterator over the non-comment lines of a stream, tracking line numbers."""

    def __init__(self, stream):
        self._lines = enumerate(stream, start=1)
        self.line_no = 0

    def next(self, expected: str) -> str:
        for line_no, line in self._lines:
            self.line_no = line_no
            line = line.strip()
            if line and not line.startswith("#"):
                return line
        raise ParameterFileSyntaxError(f"end of file, expected {expected}", self.line_no)

    def value(self, key: str) -> str:
        """Read a 'key = value' line and return the value."""
        line = self.next(key)
        name, sep, value = line.partition("=")
        if not sep or name.strip() != key:
            raise ParameterFileSyntaxError(line, self.line_no)
        return value.strip()

    def numbers(self, line: str, convert, n=None):
        try:
            values = [convert(v) for v in line.split()]
        except ValueError:
            raise ParameterFileSyntaxError(line, self.line_no) from None
        if n is not None and len(values) != n:
            raise ParameterFileSyntaxError(line, self.line_no)
        return values


def _read_matrix(lines: _Lines, label: str) -> tuple[np.ndarray, int]:
    shape = lines.numbers(lines.value(f"{label} matrix"), int, 2)
    line_no = lines.line_no
    if min(shape) < 0:
        raise ParameterFileSyntaxError(f"{label} matrix = {shape[0]} {shape[1]}", line_no)
    rows = [lines.numbers(lines.next(f"{label} matrix row"), float, shape[1]) for _ in range(shape[0])]
    return np.array(rows, dtype=np.float64).reshape(shape), line_no


def deserialize(stream) -> ProfileHMM:
    """Read model parameters from a text stream.

    Raises
    ------
    ParameterFileSyntaxError
        If the content does not follow the format
    UnsupportedVersionError
        If the format version is not supported
    """
    lines = _Lines(stream)
    version = lines.numbers(lines.value("Format version"), int, 1)[0]
    if version != FORMAT_VERSION:
        raise UnsupportedVersionError(version)
    pseudo_count = lines.numbers(lines.value("Pseudo count"), float, 1)[0]
    n_groups = lines.numbers(lines.value("Groups"), int, 1)[0]
    groups = []
    for idx in range(n_groups):
        header = lines.next("Group")
        if header != f"Group {idx}":
            raise ParameterFileSyntaxError(header, lines.line_no)
        kind = lines.value("Kind")
        try:
            kind = GroupKind(kind)
        except ValueError:
            raise ParameterFileSyntaxError(kind, lines.line_no) from None
        name = lines.value("Name")
        states = lines.numbers(lines.value("States"), int)
        states_line = lines.line_no
        insertions = lines.numbers(lines.value("Insertions"), int)
        groups.append((Group(kind, name, states, insertions), states_line, lines.line_no))
    transition, transition_line = _read_matrix(lines, "Transition")
    emission, emission_line = _read_matrix(lines, "Emission")

    n_states = transition.shape[0]
    if transition.shape[1] != n_states:
        raise ParameterFileSyntaxError(f"Transition matrix = {n_states} {transition.shape[1]}", transition_line)
    if emission.shape != (n_states, N_EMISSIONS):
        raise ParameterFileSyntaxError(f"Emission matrix = {emission.shape[0]} {emission.shape[1]}", emission_line)
    seen = set()
    for group, states_line, insertions_line in groups:
        for s in group.states:
            if not 0 <= s < n_states or s in seen:
                raise ParameterFileSyntaxError(str(s), states_line)
            seen.add(s)
        for s in group.insertions:
            if s not in group.states:
                raise ParameterFileSyntaxError(str(s), insertions_line)
    if len(seen) != n_states:
        missing = sorted(set(range(n_states)) - seen)
        raise ParameterFileSyntaxError(f"States without group {missing}", transition_line)
    return ProfileHMM.from_parameters([g for g, _, _ in groups], transition, emission, pseudo_count)


def save_model(model: ProfileHMM, path, exec_info=None) -> None:
    path = Path(path)
    with path.open("w", encoding="utf-8") as f:
        serialize(model, f, exec_info)
    logger.info(f"Saved HMM parameters to {path}")


def load_model(path) -> ProfileHMM:
    """Load model parameters from a file.

    Parameters
    ----------
    path : str, Path, or list of them
        Parameter file(s); the motifs of later files are added to the first model

    Raises
    ------
    ParameterFileExistenceError
        If a file does not exist
    ParameterFileReadError
        If a file can not be read
    """
    if isinstance(path, (list, tuple)):
        assert path, "No parameter file given"
        model = load_model(path[0])
        for other in path[1:]:
            model.add_motifs(load_model(other))
        return model

    path = Path(path)
    if not path.exists():
        raise ParameterFileExistenceError(path)
    try:
        with path.open(encoding="utf-8") as f:
            model = deserialize(f)
    except (UnicodeDecodeError, IsADirectoryError, PermissionError) as e:
        raise ParameterFileReadError(path) from e
    logger.info(f"Loaded HMM parameters from {path}")
    return model
