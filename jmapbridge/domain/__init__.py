"""Domain Layer: value objects, models, errors, events and interfaces."""
