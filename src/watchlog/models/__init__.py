"""Domain models for the watch log."""
