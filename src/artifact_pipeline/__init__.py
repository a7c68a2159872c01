"""Event-sourced, resumable multi-phase agent pipeline."""

__version__ = "0.3.0"
