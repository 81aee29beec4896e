"""HTTP API for recordflow."""
