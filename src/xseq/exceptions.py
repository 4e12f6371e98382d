"""Exceptions and warnings raised by xseq.

Configuration and numerical problems abort a run. Data-quality
problems are handled per gene and reported as warnings collected next
to the results, as is an EM run that stops at its iteration cap.
"""


class XseqError(Exception):
    """Base exception class for all xseq errors."""

    def __init__(self, message="An error occurred in xseq", details=None):
        self.message = message
        self.details = details
        super().__init__(self.message)

    def __str__(self):
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message


class ConfigurationError(XseqError):
    """Inputs are inconsistent with each other or with the mode.

    Gene-set mismatches between the mutation table, the expression
    matrix and the distributions, a cis model given a non-reflexive
    edge, or a trans model without a graph.
    """

    def __init__(self, message="Invalid model configuration", details=None):
        super().__init__(message, details)


class DataQualityError(XseqError):
    """A gene lacks the data needed to fit a background distribution."""

    def __init__(self, message="Insufficient data", details=None, gene=None):
        self.gene = gene
        super().__init__(message, details)


class NumericalError(XseqError):
    """EM produced an invalid state.

    Raised when the objective decreases between iterations or when a
    conditional probability row cannot be normalised.
    """

    def __init__(self, message="Numerical failure during EM",
                 details=None, gene=None, iteration=None):
        self.gene = gene
        self.iteration = iteration
        super().__init__(message, details)


class ConvergenceWarning(UserWarning):
    """EM reached the iteration cap before meeting the threshold."""


class DataQualityWarning(UserWarning):
    """A gene was handled with a fallback because of poor data."""
