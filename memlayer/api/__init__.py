"""HTTP API for the memory layer."""
