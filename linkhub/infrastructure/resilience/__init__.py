"""API Resilience Implementations.

Contains the request rate limiter with cooldown tracking, the shared
provider error classifier and model rotation.
Bounded Context: API Resilience
"""
