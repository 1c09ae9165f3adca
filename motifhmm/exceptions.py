"""Exceptions raised by the motif HMM engine."""

from __future__ import annotations


class MotifHMMError(Exception):
    """Base class for all errors raised by motifhmm."""


class InsertionNotInsideMotifError(MotifHMMError, ValueError):
    def __init__(self, position=None):
        msg = "Error: insertion positions must be within the motif."
        if position is not None:
            msg += f" Got position {position}."
        super().__init__(msg)


class InvalidNucleotideCodeError(MotifHMMError, ValueError):
    def __init__(self, code: str):
        super().__init__(f"Error: invalid IUPAC nucleotide code '{code}'.")


class ParameterFileExistenceError(MotifHMMError, OSError):
    def __init__(self, path):
        super().__init__(f"Error: HMM parameter file {path} does not exist.")
        self.path = path


class ParameterFileReadError(MotifHMMError, OSError):
    def __init__(self, path):
        super().__init__(f"Error: can't read from parameter file {path}.")
        self.path = path


class ParameterFileSyntaxError(MotifHMMError):
    def __init__(self, token: str, line_no: int | None = None):
        where = f" on line {line_no}" if line_no is not None else ""
        super().__init__(f"Error: syntax error in HMM parameter file{where}: unexpected '{token}'.")
        self.token = token


class UnsupportedVersionError(MotifHMMError):
    def __init__(self, version):
        super().__init__(f"Error: HMM parameter file format version {version} is not supported.")
        self.version = version


class CalculationInfinityError(MotifHMMError, ArithmeticError):
    def __init__(self, what: str = "score"):
        super().__init__(f"Error: calculation of the {what} produced infinity or NaN.")


class GradientNotImplementedError(MotifHMMError, NotImplementedError):
    def __init__(self, measure):
        super().__init__(f"Error: gradient learning is not implemented for the measure '{measure}'.")


class MultipleTasksError(MotifHMMError):
    def __init__(self, which: str):
        super().__init__(f"Error: the {which} parameters are targeted by more than one training task.")
