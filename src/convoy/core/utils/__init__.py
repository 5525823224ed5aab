"""Shared utilities: subprocess execution, file I/O, merging and time helpers."""
