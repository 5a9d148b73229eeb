from __future__ import annotations

from typing import Any, Protocol

PageHandle = Any


class PageDriver(Protocol):
    """Capability used by monitors and extraction strategies to reach a page."""

    async def start(self) -> None:
        ...

    async def close(self) -> None:
        ...

    async def open(self, address: str) -> PageHandle:
        ...

    async def read_field(self, handle: PageHandle, selector: str) -> str | None:
        ...

    async def evaluate_script(self, handle: PageHandle, probe: str) -> Any:
        ...

    async def close_page(self, handle: PageHandle) -> None:
        ...
