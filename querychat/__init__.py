"""querychat — terminal chat client for Gemini, Portkey and litellm-backed models."""

__version__ = "1.0.0"
