"""Domain models for sessions, batches and results."""
