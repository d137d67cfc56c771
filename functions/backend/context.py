"""
Explicit context handed to every handler: store clients, collaborators, settings and a clock.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Optional

from backend.config import Settings
from backend.db import DocumentStore, InMemoryDocumentStore
from backend.queue import EventQueue, InMemoryEventQueue
from backend.storage import InMemoryStorageClient, StorageClient
from backend.tree import InMemoryTreeStore, TreeStore

if TYPE_CHECKING:
    from integrations.cards import CardService
    from integrations.chat import ChatService
    from integrations.messaging import MessagingService


@dataclass
class HandlerContext:
    docs: DocumentStore
    tree: TreeStore
    storage: StorageClient
    queue: EventQueue
    cards: Optional["CardService"] = None
    messaging: Optional["MessagingService"] = None
    chat: Optional["ChatService"] = None
    settings: Settings = field(default_factory=Settings)
    clock: Callable[[], float] = time.time

    def now(self) -> float:
        """Unix seconds, the timestamp unit stored on records."""
        return self.clock()


def in_memory_context(**overrides) -> HandlerContext:
    """Builds a context on in-memory backends (useful in tests)."""
    from integrations.cards import InMemoryCardService
    from integrations.chat import InMemoryChatService
    from integrations.messaging import InMemoryMessagingService

    values = dict(
        docs=InMemoryDocumentStore(),
        tree=InMemoryTreeStore(),
        storage=InMemoryStorageClient(),
        queue=InMemoryEventQueue(),
        cards=InMemoryCardService(),
        messaging=InMemoryMessagingService(),
        chat=InMemoryChatService(),
    )
    values.update(overrides)
    return HandlerContext(**values)
