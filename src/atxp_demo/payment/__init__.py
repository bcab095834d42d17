"""Charging for tool calls."""
