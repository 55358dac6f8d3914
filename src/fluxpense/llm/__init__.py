from fluxpense.llm.openai_client import OpenAIClient

__all__ = ["OpenAIClient"]
