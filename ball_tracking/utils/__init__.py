"""Shared utilities: logging, configuration, transforms and metrics."""
