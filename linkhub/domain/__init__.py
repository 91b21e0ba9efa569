"""Domain Layer: entities, value objects, events and ports of the link catalog."""
