import numpy as np
import pytest

from motifhmm import Collection, HMMOptions, Sequence
from motifhmm.config import LineSearchOptions, TerminationOptions
from motifhmm.datagen import datagen_contrast, datagen_embedded_motif, random_sequence


def test_sequence():
    seq = Sequence.from_string("s", "ACGTN", weight=2.0)
    assert len(seq) == 5
    assert seq.string == "acgtn"
    with pytest.raises(AssertionError):
        Sequence("bad", np.array([0, 1, 99], dtype=np.int64))


def test_collection():
    collection = Collection.from_strings(["acgt", "gg"], ["tt"])
    assert collection.n_sequences == 3
    contrast = collection.contrasts[0]
    assert [s.name for s in contrast.signal_sets()] == ["signal"]
    assert [s.name for s in contrast.control_sets()] == ["control"]
    assert [s.name for s in collection.sequences()] == ["signal_0", "signal_1", "control_0"]
    assert contrast.sets[0].total_weight == 2.0


def test_options_from_dict():
    options = HMMOptions.from_dict(
        {
            "objectives": "mi",
            "weighting": True,
            "termination": {"max_iter": 5, "past": 3},
            "line_search": {"method": "exponential"},
            "unknown": 1,
        }
    )
    assert options.objectives == ["mi"]
    assert options.weighting
    assert options.termination == TerminationOptions(max_iter=5, past=3)
    assert options.line_search.method == "exponential"
    assert HMMOptions.from_dict(options.to_dict()) == options


def test_invalid_options():
    with pytest.raises(AssertionError):
        HMMOptions(bg_learning="sometimes")
    with pytest.raises(AssertionError):
        LineSearchOptions(mu=0.6, eta=0.5)
    with pytest.raises(AssertionError):
        TerminationOptions(past=0)


def test_datagen_embedded_motif():
    seqs, positions = datagen_embedded_motif("acgtnn", n_seqs=20, length=40, occurrence_rate=0.5, seed=3)
    assert len(seqs) == 20 and all(len(s) == 40 for s in seqs)
    for seq, pos in zip(seqs, positions):
        if pos is not None:
            assert seq[pos:pos + 4] == "acgt"
    assert any(p is None for p in positions) and any(p is not None for p in positions)
    again, _ = datagen_embedded_motif("acgtnn", n_seqs=20, length=40, occurrence_rate=0.5, seed=3)
    assert again == seqs


def test_datagen_contrast():
    collection, positions = datagen_contrast("ggcc", n_seqs=5, length=20)
    assert collection.n_sequences == 10
    signal = collection.contrasts[0].sets[0]
    for seq, pos in zip(signal, positions):
        assert seq.string[pos:pos + 4] == "ggcc"


def test_random_sequence_composition():
    seq = random_sequence(1000, np.random.default_rng(0), p=[1.0, 0.0, 0.0, 0.0])
    assert seq == "a" * 1000
