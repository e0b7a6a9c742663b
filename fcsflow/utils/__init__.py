"""
Utility functions and classes for FCSFlow
"""

from .caching import ResultCache, get_cache_info, params_match
from .logging import get_logger, log_execution_time, setup_logging
from .r_utils import RInterface
from .validation import (get_system_info, validate_environment,
                         validate_inputs, validate_output_permissions,
                         validate_python_packages, validate_r_environment)

__all__ = [
    "setup_logging",
    "get_logger",
    "log_execution_time",
    "ResultCache",
    "params_match",
    "get_cache_info",
    "RInterface",
    "validate_environment",
    "validate_inputs",
    "validate_python_packages",
    "validate_r_environment",
    "validate_output_permissions",
    "get_system_info",
]
