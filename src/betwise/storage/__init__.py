"""Database storage layer."""
