"""Groq provider adapter."""
