"""Task queue and worker dispatch for ApplyPass bulk-apply automation."""

__version__ = "0.1.0"
