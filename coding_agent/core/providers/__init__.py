"""Model providers. Importing this package registers the built-in providers."""

from . import anthropic_provider  # noqa: F401
from .base import BaseLLMProvider, ModelRequest, ProviderFactory

__all__ = ["BaseLLMProvider", "ModelRequest", "ProviderFactory"]
