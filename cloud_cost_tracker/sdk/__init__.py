from .openai_client import TrackedOpenAI

__all__ = ["TrackedOpenAI"]
