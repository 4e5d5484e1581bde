"""Domain Events: lightweight records published by the engine components."""
