"""
Core module for application configuration and utilities.

The exam engine lives in app.core.exam and is imported directly from there.
"""
from .config import settings

__all__ = ["settings"]
