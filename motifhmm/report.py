"""Summary tables of trained models: motif statistics, Viterbi paths and occurrences.

These functions use only the read-only interface of the model.
"""

from __future__ import annotations

import logging

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


def summary(model, threshold: float = 0.1) -> pd.DataFrame:
    """One row per motif with its name, consensus, length and information content."""
    rows = [
        {
            "group": idx,
            "name": model.group_name(idx),
            "consensus": model.consensus(idx, threshold),
            "length": model.motif_length(idx),
            "information_content": model.information_content(idx),
        }
        for idx in model.motif_groups()
    ]
    return pd.DataFrame(rows, columns=["group", "name", "consensus", "length", "information_content"])


def _iter_sequences(collection):
    for contrast in collection:
        for seqset in contrast:
            for seq in seqset:
                yield contrast, seqset, seq


def viterbi_paths(model, collection) -> pd.DataFrame:
    """Viterbi decoding of every sequence.

    Columns are contrast, set, sequence, log_probability, the state path and the
    group path (one character per position, '.' for background).
    """
    rows = []
    for contrast, seqset, seq in _iter_sequences(collection):
        path, log_p = model.viterbi(seq.codes)
        rows.append(
            {
                "contrast": contrast.name,
                "set": seqset.name,
                "sequence": seq.name,
                "log_probability": log_p,
                "states": model.path_to_string_state(path),
                "groups": model.path_to_string_group(path),
            }
        )
    return pd.DataFrame(rows, columns=["contrast", "set", "sequence", "log_probability", "states", "groups"])


def occurrence_table(model, collection, groups=None) -> pd.DataFrame:
    """Motif occurrences on the Viterbi paths of all sequences.

    Parameters
    ----------
    model : ProfileHMM
    collection : Collection
    groups : iterable of int, optional
        Motif groups to report; defaults to all

    Returns
    -------
    table : pd.DataFrame
        Columns contrast, set, sequence, motif, start, end, site, posterior; start is
        0-based and end exclusive, posterior is the probability of at least one
        occurrence of the motif in the sequence
    """
    if groups is None:
        groups = model.motif_groups()
    rows = []
    for contrast, seqset, seq in _iter_sequences(collection):
        path, _ = model.viterbi(seq.codes)
        string = seq.string
        for idx in groups:
            occurrences = model.motif_occurrences(path, idx)
            if not occurrences:
                continue
            _, posterior = model.posterior_atleast_one(seq.codes, [idx])
            for start, end in occurrences:
                rows.append(
                    {
                        "contrast": contrast.name,
                        "set": seqset.name,
                        "sequence": seq.name,
                        "motif": model.group_name(idx),
                        "start": start,
                        "end": end,
                        "site": string[start:end],
                        "posterior": posterior,
                    }
                )
    table = pd.DataFrame(
        rows, columns=["contrast", "set", "sequence", "motif", "start", "end", "site", "posterior"]
    )
    logger.info(f"Found {len(table)} motif occurrences in {collection.n_sequences} sequences")
    return table


def occurrence_counts(model, collection) -> pd.DataFrame:
    """Number of sequences with occurrences and of occurrences per motif and set."""
    rows = []
    for contrast in collection:
        for seqset in contrast:
            paths = [model.viterbi(seq.codes)[0] for seq in seqset]
            for idx in model.motif_groups():
                counts = np.array([model.count_motif(p, idx) for p in paths])
                rows.append(
                    {
                        "contrast": contrast.name,
                        "set": seqset.name,
                        "motif": model.group_name(idx),
                        "sequences": len(paths),
                        "present": int((counts > 0).sum()),
                        "occurrences": int(counts.sum()),
                    }
                )
    return pd.DataFrame(rows, columns=["contrast", "set", "motif", "sequences", "present", "occurrences"])
