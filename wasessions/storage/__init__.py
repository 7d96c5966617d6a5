"""Persistence adapters: credentials, metadata store, conversation records."""

from wasessions.storage.conversations import ConversationArchive
from wasessions.storage.credentials import CredentialState, CredentialStore
from wasessions.storage.metadata import STATUS_ACTIVE, STATUS_INACTIVE, MetadataStore

__all__ = [
    "ConversationArchive",
    "CredentialState",
    "CredentialStore",
    "MetadataStore",
    "STATUS_ACTIVE",
    "STATUS_INACTIVE",
]
