"""Caching Service Implementation.

Provides the TTL result cache used to memoize enrichment and search calls,
with in-memory and disk (diskcache) storage backends.
Bounded Context: Cache Management
"""
