"""General utility functions for the coordination layer."""

from .json_utils import estimate_json_size, stable_serialize, truncate_for_log

__all__ = ["estimate_json_size", "stable_serialize", "truncate_for_log"]
