"""Durable storage for the ApplyPass task queue."""
