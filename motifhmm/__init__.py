"""Profile hidden Markov models for discriminative motif discovery.

This package implements HMMs of short nucleic acid motifs embedded in background
sequence, where:
- State 0 is a non-emitting start state and state 1 the background
- Each motif is a group of chain states, optionally padded and with insertion branches
- Parameters are learned generatively (Baum-Welch, Viterbi) or discriminatively

Main components:
- ProfileHMM: Main model class
- Inference algorithms: scaled forward, backward, Viterbi, occurrence posteriors
- Learning: expected counts and re-estimation
- Discriminative learning: objective measures, gradients and line searches
- Sampling: MCMC structure search with parallel tempering
- IO and reporting: parameter files and summary tables
"""

from .config import HMMOptions, LineSearchOptions, SamplingOptions, TerminationOptions
from .data import Collection, Contrast, Sequence, SeqSet
from .datagen import datagen_contrast, datagen_embedded_motif
from .exceptions import (
    CalculationInfinityError,
    GradientNotImplementedError,
    InsertionNotInsideMotifError,
    InvalidNucleotideCodeError,
    MotifHMMError,
    MultipleTasksError,
    ParameterFileExistenceError,
    ParameterFileReadError,
    ParameterFileSyntaxError,
    UnsupportedVersionError,
)
from .gradient import Gradient, compute_gradient
from .inference import (
    backward_prescaled,
    expected_posterior,
    forward_scale,
    forward_scaled,
    pair_posterior_atleast_one,
    posterior_atleast_one,
    viterbi,
)
from .io import load_model, save_model
from .learning import baum_welch_iteration, viterbi_iteration
from .linesearch import line_search, line_search_more_thuente
from .measures import MEASURES
from .model import GroupKind, ProfileHMM
from .report import occurrence_table, summary, viterbi_paths
from .sampling import parallel_tempering
from .training import compute_score, define_training_tasks, train
from .utils import decode, encode, setup_logging, validate_seq

__all__ = [
    # Main model
    "ProfileHMM",
    "GroupKind",
    # Data and options
    "Sequence",
    "SeqSet",
    "Contrast",
    "Collection",
    "HMMOptions",
    "TerminationOptions",
    "LineSearchOptions",
    "SamplingOptions",
    # Inference algorithms
    "forward_scaled",
    "forward_scale",
    "backward_prescaled",
    "viterbi",
    "posterior_atleast_one",
    "pair_posterior_atleast_one",
    "expected_posterior",
    # Learning
    "baum_welch_iteration",
    "viterbi_iteration",
    "Gradient",
    "compute_gradient",
    "line_search",
    "line_search_more_thuente",
    "MEASURES",
    "define_training_tasks",
    "train",
    "compute_score",
    "parallel_tempering",
    # IO and reporting
    "load_model",
    "save_model",
    "summary",
    "viterbi_paths",
    "occurrence_table",
    # Utilities
    "encode",
    "decode",
    "validate_seq",
    "setup_logging",
    # Data generation
    "datagen_embedded_motif",
    "datagen_contrast",
    # Errors
    "MotifHMMError",
    "InsertionNotInsideMotifError",
    "InvalidNucleotideCodeError",
    "ParameterFileExistenceError",
    "ParameterFileReadError",
    "ParameterFileSyntaxError",
    "UnsupportedVersionError",
    "CalculationInfinityError",
    "GradientNotImplementedError",
    "MultipleTasksError",
]

__version__ = "0.1.0"
