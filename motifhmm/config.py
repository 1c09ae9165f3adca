"""Configuration dataclasses carrying the numeric hyper-parameters of training."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field, fields
from typing import Optional

logger = logging.getLogger(__name__)

BG_LEARNING_METHODS = ("fixed", "em", "gradient")
LINE_SEARCH_METHODS = ("exponential", "more-thuente")


def _from_dict(cls, config: dict):
    known = {f.name for f in fields(cls)}
    unknown = set(config) - known
    if unknown:
        logger.warning(f"Ignoring unknown {cls.__name__} keys: {sorted(unknown)}")
    return cls(**{k: v for k, v in config.items() if k in known})


@dataclass
class TerminationOptions:
    """When to stop iterative training.

    Training stops when the score improvement over ``past`` iterations, relative to the
    current score unless ``absolute_improvement`` is set, falls below
    ``delta_tolerance``. A drop in score counts as a negative improvement.
    """

    max_iter: int = 1000
    gamma_tolerance: float = 1e-4
    delta_tolerance: float = 1e-4
    epsilon_tolerance: float = 0.0
    past: int = 1
    absolute_improvement: bool = False

    def __post_init__(self):
        assert self.max_iter >= 0, "max_iter must be non-negative (0 means no limit)"
        assert self.past >= 1, "past must be at least 1"
        assert self.gamma_tolerance >= 0 and self.epsilon_tolerance >= 0

    @classmethod
    def from_dict(cls, config: dict):
        return _from_dict(cls, config)


@dataclass
class LineSearchOptions:
    """Parameters of gradient line searching.

    ``mu``, ``eta`` and ``delta`` are the sufficient decrease, curvature and interval
    shrinkage parameters of the Moré-Thuente algorithm. ``initial_step`` is the length
    of the first trial step in reparameterized coordinates.
    """

    method: str = "more-thuente"
    mu: float = 0.1
    eta: float = 0.5
    delta: float = 0.66
    max_steps: int = 10
    initial_step: float = 1.0
    conjugate_gradient: bool = True
    cg_restart: int = 20

    def __post_init__(self):
        assert self.method in LINE_SEARCH_METHODS, f"Unknown line search method {self.method}"
        assert 0 < self.mu < self.eta < 1, "Moré-Thuente requires 0 < mu < eta < 1"
        assert 0 < self.delta < 1
        assert self.max_steps >= 1
        assert self.initial_step > 0

    @classmethod
    def from_dict(cls, config: dict):
        return _from_dict(cls, config)


@dataclass
class SamplingOptions:
    """Parameters of MCMC structure sampling with parallel tempering.

    ``min_size`` and ``max_size`` default to the initial motif length.
    """

    do_sampling: bool = False
    temperature: float = 1e-3
    min_size: Optional[int] = None
    max_size: Optional[int] = None
    n_indels: int = 5
    n_shift: int = 5
    n_parallel: int = 6
    swap_interval: int = 1

    def __post_init__(self):
        assert self.temperature > 0
        assert self.n_parallel >= 1
        assert self.swap_interval >= 1

    @classmethod
    def from_dict(cls, config: dict):
        return _from_dict(cls, config)


@dataclass
class HMMOptions:
    """All options of HMM initialization, training and evaluation."""

    objectives: list[str] = field(default_factory=lambda: ["mi"])
    bg_learning: str = "em"
    alpha: float = 0.03
    prior_weight: float = 1.0
    expected_length: Optional[float] = None
    pad_left: int = 0
    pad_right: int = 0
    contingency_pseudo_count: float = 1.0
    emission_pseudo_count: float = 1.0
    transition_pseudo_count: float = 0.0
    class_prior: float = 0.5
    conditional_motif_prior1: float = 0.6
    conditional_motif_prior2: float = 0.03
    learn_class_prior: bool = True
    learn_conditional_motif_prior: bool = True
    weighting: bool = False
    train_background_first: bool = False
    n_threads: int = 1
    random_salt: Optional[int] = None
    termination: TerminationOptions = field(default_factory=TerminationOptions)
    line_search: LineSearchOptions = field(default_factory=LineSearchOptions)
    sampling: SamplingOptions = field(default_factory=SamplingOptions)

    def __post_init__(self):
        if isinstance(self.objectives, str):
            self.objectives = [self.objectives]
        assert self.bg_learning in BG_LEARNING_METHODS, f"Unknown background learning method {self.bg_learning}"
        assert 0 <= self.alpha < 1 / 3, "alpha must lie in [0, 1/3)"
        assert self.prior_weight > 0
        assert self.contingency_pseudo_count >= 0
        assert self.emission_pseudo_count >= 0 and self.transition_pseudo_count >= 0
        assert 0 < self.class_prior < 1
        assert 0 < self.conditional_motif_prior1 < 1 and 0 < self.conditional_motif_prior2 < 1
        assert self.n_threads != 0

    @classmethod
    def from_dict(cls, config: dict):
        config = dict(config)
        for key, sub in (
            ("termination", TerminationOptions),
            ("line_search", LineSearchOptions),
            ("sampling", SamplingOptions),
        ):
            if isinstance(config.get(key), dict):
                config[key] = sub.from_dict(config[key])
        return _from_dict(cls, config)

    def to_dict(self) -> dict:
        return asdict(self)
