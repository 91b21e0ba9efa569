"""OpenAI provider adapter."""
