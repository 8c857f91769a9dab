from __future__ import annotations

from enum import Enum

from .datastore import Datastore
from .errors import DuplicateAssociation


class MembershipOutcome(str, Enum):
    ADDED = "added"
    ALREADY_EXISTS = "already_exists"


class BoardMembershipGuard:
    """
    Adds a post to a board at most once.

    The lookup only exists to report ALREADY_EXISTS instead of a failure. The
    datastore's (board_id, post_id) constraint is the real guard: losing an
    insert race to another writer comes back as DuplicateAssociation, which is
    the same outcome.
    """

    def __init__(self, store: Datastore) -> None:
        self._store = store

    def add_if_absent(self, board_id: str, post_id: str) -> MembershipOutcome:
        b = (board_id or "").strip()
        p = (post_id or "").strip()
        if not b or not p:
            raise ValueError("board_id and post_id must be non-empty")

        if self._store.find_board_post(b, p) is not None:
            return MembershipOutcome.ALREADY_EXISTS

        try:
            self._store.insert_board_post(b, p)
        except DuplicateAssociation:
            return MembershipOutcome.ALREADY_EXISTS
        return MembershipOutcome.ADDED
