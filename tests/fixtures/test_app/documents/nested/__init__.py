"""Nested test documents."""
