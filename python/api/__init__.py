"""HTTP layer for the Documents View API."""
