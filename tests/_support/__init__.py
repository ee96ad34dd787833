"""Shared test helpers for batch-spine."""
