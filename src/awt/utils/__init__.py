"""Shared utilities: error taxonomy, error rendering and logging setup."""
