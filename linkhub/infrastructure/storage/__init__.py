"""Storage Adapters.

Item store (in-memory and JSON file) and key/value state persistence.
Bounded Context: Persistence
"""
