"""Domain Models: entities and value objects of the link catalog."""
