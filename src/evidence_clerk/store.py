from __future__ import annotations

from enum import Enum
from typing import Optional, Protocol


class EditOutcome(str, Enum):
    """Result of a write against the page store."""

    OK = "ok"
    AUTH_EXPIRED = "auth_expired"
    PROTECTED_PAGE = "protected_page"
    TRANSIENT = "transient"


class PageStore(Protocol):
    """Wiki operations the clerk depends on. Implemented by the bot's wiki client."""

    def get_text(self, title: str) -> Optional[str]: ...

    def get_section_text(self, title: str, index: int) -> str: ...

    def edit(
        self,
        title: str,
        text: str,
        summary: str,
        minor: bool = False,
        section: Optional[int] = None,
    ) -> EditOutcome: ...

    def new_section(self, title: str, header: str, body: str) -> EditOutcome: ...

    def user_exists(self, name: str) -> bool: ...

    def has_pending_messages(self) -> bool: ...

    def login(self) -> bool: ...
