"""linkhub: a personal catalog of security/OSINT links with rate-limited AI enrichment."""

__version__ = "0.1.0"
