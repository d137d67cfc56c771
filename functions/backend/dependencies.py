"""
Dependency wiring for the Cloud Functions entrypoints and the worker.
"""

from __future__ import annotations

from backend.config import get_settings
from backend.context import HandlerContext
from backend.db import (
    DocumentStore,
    FirestoreDocumentStore,
    InMemoryDocumentStore,
    SqlDocumentStore,
)
from backend.queue import EventQueue, InMemoryEventQueue, RedisEventQueue
from backend.storage import (
    CosStorageClient,
    FirebaseStorageClient,
    InMemoryStorageClient,
    StorageClient,
)
from backend.tree import InMemoryTreeStore, RealtimeTreeStore, TreeStore
from integrations.cards import CardService, InMemoryCardService, TrelloCardService
from integrations.chat import ChatService, InMemoryChatService, SlackChatService
from integrations.messaging import (
    FirebaseMessagingService,
    InMemoryMessagingService,
    MessagingService,
)

_document_store: DocumentStore | None = None
_tree_store: TreeStore | None = None
_storage_client: StorageClient | None = None
_queue_client: EventQueue | None = None
_card_service: CardService | None = None
_messaging_service: MessagingService | None = None
_chat_service: ChatService | None = None


def get_document_store() -> DocumentStore:
    """
    Return a singleton document store so warm function instances reuse connections.
    """
    global _document_store
    if _document_store:
        return _document_store

    settings = get_settings()
    if settings.use_in_memory_backends:
        _document_store = InMemoryDocumentStore()
    elif settings.database_url:
        _document_store = SqlDocumentStore(settings.database_url)
    else:
        _document_store = FirestoreDocumentStore()
    return _document_store


def get_tree_store() -> TreeStore:
    global _tree_store
    if _tree_store:
        return _tree_store

    settings = get_settings()
    if settings.use_in_memory_backends:
        _tree_store = InMemoryTreeStore()
    else:
        _tree_store = RealtimeTreeStore(url=settings.firebase_database_url)
    return _tree_store


def get_storage_client() -> StorageClient:
    global _storage_client
    if _storage_client:
        return _storage_client

    settings = get_settings()
    if settings.use_in_memory_backends:
        _storage_client = InMemoryStorageClient()
    elif not settings.cos_bucket:
        _storage_client = FirebaseStorageClient(settings.storage_bucket)
    else:
        _storage_client = CosStorageClient(
            bucket=settings.cos_bucket,
            region=settings.cos_region or "",
            endpoint=settings.cos_endpoint or "",
            access_key_id=settings.aws_access_key_id or "",
            secret_access_key=settings.aws_secret_access_key or "",
        )
    return _storage_client


def get_queue_client() -> EventQueue:
    """
    Return a singleton queue client for handing deficiency events to workers.
    """
    global _queue_client
    if _queue_client:
        return _queue_client

    settings = get_settings()
    if settings.redis_url:
        _queue_client = RedisEventQueue(
            url=settings.redis_url,
            queue_key=settings.redis_queue_key,
        )
    else:
        _queue_client = InMemoryEventQueue()
    return _queue_client


def get_card_service() -> CardService:
    global _card_service
    if _card_service:
        return _card_service

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.trello_api_key:
        _card_service = InMemoryCardService()
    else:
        _card_service = TrelloCardService(
            api_key=settings.trello_api_key,
            api_token=settings.trello_api_token or "",
            api_url=settings.trello_api_url,
            timeout=settings.request_timeout_seconds,
        )
    return _card_service


def get_messaging_service() -> MessagingService:
    global _messaging_service
    if _messaging_service:
        return _messaging_service

    settings = get_settings()
    if settings.use_in_memory_backends:
        _messaging_service = InMemoryMessagingService()
    else:
        _messaging_service = FirebaseMessagingService()
    return _messaging_service


def get_chat_service() -> ChatService:
    global _chat_service
    if _chat_service:
        return _chat_service

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.slack_bot_token:
        _chat_service = InMemoryChatService()
    else:
        _chat_service = SlackChatService(
            bot_token=settings.slack_bot_token,
            api_url=settings.slack_api_url,
            timeout=settings.request_timeout_seconds,
        )
    return _chat_service


def get_handler_context() -> HandlerContext:
    return HandlerContext(
        docs=get_document_store(),
        tree=get_tree_store(),
        storage=get_storage_client(),
        queue=get_queue_client(),
        cards=get_card_service(),
        messaging=get_messaging_service(),
        chat=get_chat_service(),
        settings=get_settings(),
    )
