"""Page driver implementations used to obtain a live page per ticker."""

from .base import PageDriver, PageHandle
from .browser import PlaywrightPageDriver

__all__ = [
    "PageDriver",
    "PageHandle",
    "PlaywrightPageDriver",
]
