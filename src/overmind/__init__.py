"""Overmind - autonomous agents with a task queue and a multi-phase worker pipeline."""

__version__ = "0.1.0"
