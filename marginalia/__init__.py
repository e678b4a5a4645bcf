"""Marginalia - note-taking backend with cited AI elaboration."""

__version__ = "0.1.0"
