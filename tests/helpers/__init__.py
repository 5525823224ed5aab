"""Test helper modules for the Convoy test suite.

- git_helpers: real git repositories, commits and remotes in tmp directories
- fakes: recording stand-ins for external collaborators (resolver, fix action)
"""
from __future__ import annotations
