"""
RewardFlow CLI

Command-line interface for inspecting configuration and running the engine.
"""

from .main import app, main

__all__ = ["app", "main"]
