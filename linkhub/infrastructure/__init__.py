"""Infrastructure Layer: Contains concrete implementations and adapters.

Connects the application to the outside world (AI provider APIs, disk
storage, configuration, console UI) by implementing the interfaces defined
in the domain layer. Also includes the rate limiting and caching services.
"""
