"""Minimal paid-tool server with URL-mode payment elicitation."""

__version__ = "1.0.0"
