"""Multi-strategy price extraction."""

from .extractor import Extractor
from .strategies import (
    ExtractionStrategy,
    Reading,
    ScriptContextStrategy,
    SelectorStrategy,
    TextScanStrategy,
    TitleStrategy,
    default_strategies,
)

__all__ = [
    "Extractor",
    "ExtractionStrategy",
    "Reading",
    "ScriptContextStrategy",
    "SelectorStrategy",
    "TextScanStrategy",
    "TitleStrategy",
    "default_strategies",
]
