"""Top-level Convoy commands."""
