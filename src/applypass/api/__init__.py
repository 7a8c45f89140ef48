"""Request-style queue endpoint shared by end users and workers."""
