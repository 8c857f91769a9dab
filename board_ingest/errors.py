from __future__ import annotations


class IngestError(RuntimeError):
    """Base class for every error raised by the ingestion pipeline."""


class ConfigError(IngestError):
    """Raised when configuration is missing or invalid."""


class FetchError(IngestError):
    """Raised when the content API call fails, times out, or reports success=false."""

    def __init__(self, message: str, *, url: str | None = None, platform: str | None = None) -> None:
        super().__init__(message)
        self.url = url
        self.platform = platform


class MissingContentError(IngestError):
    """Raised when a payload lacks the owner handle or the post identifier."""


class PersistenceError(IngestError):
    """Raised when the datastore is unavailable or rejects a write."""


class DuplicateAssociation(IngestError):
    """The board already contains the post. A soft outcome, not a failure."""

    def __init__(self, board_id: str, post_id: str) -> None:
        super().__init__(f"Post {post_id} already exists in board {board_id}")
        self.board_id = board_id
        self.post_id = post_id
