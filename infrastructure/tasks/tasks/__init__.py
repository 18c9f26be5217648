"""Housekeeping task modules; importing the package registers the tasks."""
from . import security  # noqa: F401

__all__ = ["security"]
