"""HTTP API for Betwise."""
