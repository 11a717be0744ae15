"""
staging.py — Pending-order handoff across the hosted payment redirect.

The browser leaves the storefront for the hosted payment page and comes back on
one of the two return routes. The order data needed to finalize the order
travels through a single-slot handoff channel:

    • put() stores the PendingOrder right before the redirect
    • take_once() returns it on return and empties the slot

The record is serialized to JSON on put, so what comes back is exactly what the
payment initiator wrote. A store has one writer and one reader; a second
checkout started from the same browser session overwrites the first.
"""

import logging
import os
import tempfile
from abc import ABC, abstractmethod
from typing import Dict, Optional

from .models import PendingOrder

log = logging.getLogger(__name__)


class StagingStore(ABC):
    """Single-slot, single-use store for one PendingOrder."""

    @abstractmethod
    def put(self, order: PendingOrder) -> None:
        """Stages the order, replacing anything already staged."""

    @abstractmethod
    def peek(self) -> Optional[PendingOrder]:
        """Returns the staged order without consuming it."""

    @abstractmethod
    def discard(self) -> None:
        """Empties the slot."""

    def take_once(self) -> Optional[PendingOrder]:
        """Returns the staged order and empties the slot. None when nothing is staged."""
        order = self.peek()
        self.discard()
        return order


class InMemoryStagingStore(StagingStore):
    def __init__(self):
        self._payload: Optional[str] = None

    def put(self, order: PendingOrder) -> None:
        if self._payload is not None:
            log.warning("[Staging] Overwriting a pending order that was never consumed.")
        self._payload = order.model_dump_json()

    def peek(self) -> Optional[PendingOrder]:
        if self._payload is None:
            return None
        return PendingOrder.model_validate_json(self._payload)

    def discard(self) -> None:
        self._payload = None


class FileStagingStore(StagingStore):
    """
    Stages the order in a JSON file so it also survives a process restart
    between the redirect and the return.
    """

    def __init__(self, path: str):
        self.path = path

    def put(self, order: PendingOrder) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        fd, tmp_path = tempfile.mkstemp(dir=directory, suffix=".tmp")
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(order.model_dump_json())
        os.replace(tmp_path, self.path)

    def peek(self) -> Optional[PendingOrder]:
        try:
            with open(self.path, encoding="utf-8") as fh:
                payload = fh.read()
        except FileNotFoundError:
            return None
        return PendingOrder.model_validate_json(payload)

    def discard(self) -> None:
        try:
            os.remove(self.path)
        except FileNotFoundError:
            pass


class StagingRegistry:
    """
    One in-memory staging slot per browser session.

    Only sessions with something staged keep a slot: readers use pop(), which
    never creates one, and writers prune() the slot when nothing was put.
    """

    def __init__(self):
        self._stores: Dict[str, InMemoryStagingStore] = {}

    def __len__(self) -> int:
        return len(self._stores)

    def for_session(self, session_id: str) -> InMemoryStagingStore:
        """Returns the session's slot, creating it for a writer."""
        store = self._stores.get(session_id)
        if store is None:
            store = self._stores[session_id] = InMemoryStagingStore()
        return store

    def pop(self, session_id: str) -> Optional[InMemoryStagingStore]:
        """Removes and returns the session's slot. None when the session has none."""
        return self._stores.pop(session_id, None)

    def prune(self, session_id: str):
        """Drops the session's slot if nothing is staged in it."""
        store = self._stores.get(session_id)
        if store is not None and store.peek() is None:
            del self._stores[session_id]
