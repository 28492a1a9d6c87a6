"""Configuration utilities for the decision journal."""

from .config import Settings, load_settings

__all__ = ['Settings', 'load_settings']
