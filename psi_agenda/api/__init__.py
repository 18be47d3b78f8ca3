"""HTTP API for psi-agenda."""
