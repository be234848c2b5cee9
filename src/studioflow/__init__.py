"""Orchestration core for multi-phase AI video productions."""

__version__ = "0.1.0"
