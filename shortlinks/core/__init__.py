"""Core module for the short-link mapping store."""

from shortlinks.core.config import settings

__all__ = ["settings"]
