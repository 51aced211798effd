"""ghynrm: Network Regression Models on generalized hypergeometric ensembles.

The public API mirrors the module layout. Most users fit single models with
`nrm`, run stepwise selection with `nrm_selection`, and print or plot the
results with the helpers in `utils`:

```python
from ghynrm import nrm, nrm_selection, utils
```
"""

import logging

from . import NRM_solver, errors, ghype_likelihood, layers, selection, utils
from .errors import (
    ConfigurationError,
    ConvergenceError,
    DomainError,
    NRMError,
    SingularInformationError,
)
from .layers import Bundle, Layer, LayerSet, NetworkData, make_bundles
from .NRM_solver import NRMModel, NRMResult, lr_test, nrm, null_model, rebase_aic
from .selection import SelectionTrace, nrm_selection

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "NRM_solver",
    "errors",
    "ghype_likelihood",
    "layers",
    "selection",
    "utils",
    "NRMError",
    "ConfigurationError",
    "DomainError",
    "ConvergenceError",
    "SingularInformationError",
    "NetworkData",
    "Layer",
    "LayerSet",
    "Bundle",
    "make_bundles",
    "NRMModel",
    "NRMResult",
    "nrm",
    "null_model",
    "rebase_aic",
    "lr_test",
    "SelectionTrace",
    "nrm_selection",
]
