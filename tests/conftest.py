"""Shared fixtures for the motifhmm test suite."""

import logging

import numpy as np
import pytest

from motifhmm import Collection, HMMOptions, ProfileHMM, TerminationOptions
from motifhmm.datagen import datagen_contrast, datagen_embedded_motif

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")

MOTIF = "gattac"


@pytest.fixture
def rng():
    return np.random.default_rng(0)


@pytest.fixture
def bg_model():
    """Model with the start and background states only."""
    return ProfileHMM()


@pytest.fixture
def motif_model():
    """Model with one motif seeded from an IUPAC string."""
    model = ProfileHMM()
    model.add_motif("acgt", expected_length=50)
    return model


@pytest.fixture
def insertion_model():
    """Model with one six column motif and insertions after the second and fourth core state."""
    model = ProfileHMM()
    model.add_motif("acgtac", expected_length=50, insertions=[2, 4])
    return model


@pytest.fixture
def two_motif_model():
    model = ProfileHMM()
    model.add_motif("aacg", expected_length=50)
    model.add_motif("ttgca", expected_length=100, insertions=[2])
    return model


@pytest.fixture
def small_contrast():
    """A small signal and control collection with the motif enriched in the signal set."""
    collection, _ = datagen_contrast("acgt", n_seqs=6, length=30, signal_rate=1.0, control_rate=0.2, seed=7)
    return collection


@pytest.fixture
def embedded():
    """Fifty sequences of length 100 carrying one occurrence each, with their positions."""
    seqs, positions = datagen_embedded_motif(MOTIF, n_seqs=50, length=100, seed=42)
    return Collection.from_strings(seqs), positions


@pytest.fixture
def options():
    return HMMOptions(termination=TerminationOptions(max_iter=3, gamma_tolerance=0.0, delta_tolerance=0.0))
