"""Cognitive check implementations, one module per check."""
