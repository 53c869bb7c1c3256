"""
Exception taxonomy for model specification, data assembly and fitting.

Three failure classes are distinguished and raised at the point of detection:

- ConfigurationError: the request itself is inconsistent (dimensions that
  disagree with the specification, burn-in >= iterations, thinning <= 0,
  unknown monitored quantities, mismatched parameter declarations).
- DataError: the supplied series violate a data rule (missing values in a
  covariate, a forecast horizon without missing placeholders).
- NumericalError: the sampler could not evaluate the model (e.g. a count
  likelihood given a negative value). Never retried.
"""

from typing import Optional


class StateSpaceError(Exception):
    """Base class for all errors raised by this library."""


class ConfigurationError(StateSpaceError, ValueError):
    """Invalid model or fit configuration."""


class DataError(StateSpaceError, ValueError):
    """Invalid observation or covariate data."""


class NumericalError(StateSpaceError, RuntimeError):
    """
    Sampler failure surfaced from the inference backend.

    Parameters
    ----------
    message : str
        Description of the failure.
    quantity : str, optional
        Name of the offending model quantity, when known.
    index : int, optional
        Offending time step, when known.
    """

    def __init__(
        self,
        message: str,
        quantity: Optional[str] = None,
        index: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.quantity = quantity
        self.index = index
