"""HTTP run-control API."""
