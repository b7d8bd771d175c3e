"""Core utilities: errors, logging, configuration and hashing."""
