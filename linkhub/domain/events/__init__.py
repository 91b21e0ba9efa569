"""Domain Events: notifications about enrichment queue activity."""
