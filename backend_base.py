from abc import ABC, abstractmethod


class BrowserBackend(ABC):
    """One browser session. Calls are awaited one at a time by the orchestrator.

    Elements are opaque handles owned by the backend; ``bounding_box`` returns
    ``{"x", "y", "width", "height"}`` in viewport pixels or ``None``.
    """

    # UA families this engine can present without contradicting its TLS handshake; None means any
    SUPPORTED_FAMILIES: frozenset[str] | None = None

    @abstractmethod
    async def create(self, options) -> None:
        ...

    @abstractmethod
    async def navigate(self, url: str, timeout_ms: int) -> None:
        ...

    @abstractmethod
    async def wait_for_stable(self, timeout_ms: int) -> None:
        ...

    @abstractmethod
    async def snapshot_html(self) -> str:
        ...

    @abstractmethod
    async def document_title(self) -> str:
        ...

    @abstractmethod
    async def evaluate_xpath(self, expr: str):
        ...

    @abstractmethod
    async def query_css(self, selector: str):
        ...

    @abstractmethod
    async def query_all_css(self, selector: str) -> list:
        ...

    @abstractmethod
    async def bounding_box(self, element) -> dict | None:
        ...

    @abstractmethod
    async def pointer_move(self, x: float, y: float) -> None:
        ...

    @abstractmethod
    async def pointer_click(self, x: float, y: float) -> None:
        ...

    @abstractmethod
    async def type_text(self, text: str) -> None:
        ...

    @abstractmethod
    async def scroll(self, delta_y: float) -> None:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...
