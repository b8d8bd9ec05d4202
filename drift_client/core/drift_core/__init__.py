"""
drift_client core package.

The facade that assembles drift_client program invocations, its config and
the composition root used by the console.
"""

from .drift_client import DriftClient
from .drift_config import DriftClientConfig, get_drift_client_config
from .drift_core import DriftCore

__all__ = ["DriftClient", "DriftClientConfig", "DriftCore", "get_drift_client_config"]
