#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# ghynrm/errors.py

"""
Error taxonomy shared by the likelihood engine, the optimizer and the
stepwise selector.

- ConfigurationError: inputs that cannot describe a valid model (fatal).
- DomainError: covariate layers with values outside the model domain (fatal).
- ConvergenceError: the optimizer did not reach a stationary point (recoverable).
- SingularInformationError: estimates exist but inference is unavailable.
"""

from __future__ import annotations

from typing import Any, Optional

import numpy as np


class NRMError(Exception):
    """Base class for all ghynrm errors."""


class ConfigurationError(NRMError, ValueError):
    """Mismatched shapes or labels, empty layer sets, invalid options."""


class DomainError(NRMError, ValueError):
    """A covariate layer holds a negative, non-finite or unguarded zero value."""


class ConvergenceError(NRMError, RuntimeError):
    """
    The optimizer exhausted its budget or stalled away from a stationary point.

    The last iterate is kept so that callers may retry from a perturbed start.
    """

    def __init__(
        self,
        message: str,
        *,
        coefficients: Optional[np.ndarray] = None,
        n_iter: int = 0,
    ) -> None:
        super().__init__(message)
        self.coefficients = None if coefficients is None else np.array(coefficients, dtype=np.float64)
        self.n_iter = int(n_iter)


class SingularInformationError(NRMError, RuntimeError):
    """
    The observed information matrix at the optimum is not invertible.

    `result` holds the point estimates with all inference fields set to None.
    """

    def __init__(self, message: str, *, result: Any = None) -> None:
        super().__init__(message)
        self.result = result


__all__ = [
    "NRMError",
    "ConfigurationError",
    "DomainError",
    "ConvergenceError",
    "SingularInformationError",
]
