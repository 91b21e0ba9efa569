"""AI Provider Adapters (Groq, OpenAI)."""
