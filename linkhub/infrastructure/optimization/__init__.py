"""Optimization Services.

Token estimation and token-budget batch sizing.
Bounded Context: Token Management
"""
