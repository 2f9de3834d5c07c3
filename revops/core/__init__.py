"""Core module for RevOps configuration and utilities."""

from revops.core.config import Settings, get_policy, get_settings
from revops.core.exceptions import RevOpsException, sanitize_error

__all__ = [
    "RevOpsException",
    "Settings",
    "get_policy",
    "get_settings",
    "sanitize_error",
]
