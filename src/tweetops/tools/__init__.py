from .registry import ToolContext, ToolRegistry, text_result
from .twitter import build_registry

__all__ = [
    "ToolContext",
    "ToolRegistry",
    "build_registry",
    "text_result",
]
