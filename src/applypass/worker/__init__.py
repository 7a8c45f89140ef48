"""Out-of-process worker that claims tasks and drives page automation."""
