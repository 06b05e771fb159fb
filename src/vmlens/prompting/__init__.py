from .registry import DEFAULT_PROMPTS, PromptRegistry, PromptSpec

__all__ = ["DEFAULT_PROMPTS", "PromptRegistry", "PromptSpec"]
