"""Application services (queue scheduler, batch enrichment, catalog, search)."""
