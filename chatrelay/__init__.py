"""Multi-provider LLM chat router with rate limits, response caching and long-term memory."""

__version__ = "0.1.0"
