"""Domain layer: value objects, enums, events and the remote error classifier."""
