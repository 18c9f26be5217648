"""Celery wiring for periodic security housekeeping.

``celery_app`` is the worker/beat entry point; ``TaskDispatcher`` lets
operators trigger a job out of schedule without importing Celery.
"""
from .config.celery import celery_app
from .utils.dispatcher import TaskDispatcher

__all__ = ["celery_app", "TaskDispatcher"]
