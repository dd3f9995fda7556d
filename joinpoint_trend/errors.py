"""
joinpoint_trend.errors
~~~~~~~~~~~~~~~~~~~~~~
Exceptions raised when a single joinpoint fit cannot be produced.

All of them are fatal to the request that raised them and never to a
batch of independent fits.
"""

from __future__ import annotations


class JoinpointError(ValueError):
    """Base class for every failure of a single fit request."""


class InputError(JoinpointError):
    """The series is malformed or too short to fit.

    Raised for fewer than two observations, non-increasing times,
    non-finite values, or non-positive values under the log link.
    """


class InfeasibleRequest(JoinpointError):
    """The requested number of joinpoints cannot satisfy the minimum
    segment length for the given series."""


class NumericalFailure(JoinpointError):
    """The inner solve was singular or did not converge."""
