"""Database repositories for data access."""

from chatrelay.db.repositories.conversation import (
    create_message,
    get_conversation_messages,
    get_or_create_conversation,
    get_owner_conversation,
    get_recent_messages,
    list_owner_conversations,
)
from chatrelay.db.repositories.memory import (
    create_memory_record,
    deactivate_expired,
    deactivate_record,
    deactivate_tagged_facts,
    delete_expired_summaries,
    get_owner_record,
    list_active_records,
    list_active_summaries,
    upsert_summary,
)

__all__ = [
    # Conversations
    "create_message",
    "get_conversation_messages",
    "get_or_create_conversation",
    "get_owner_conversation",
    "get_recent_messages",
    "list_owner_conversations",
    # Memory
    "create_memory_record",
    "deactivate_expired",
    "deactivate_record",
    "deactivate_tagged_facts",
    "delete_expired_summaries",
    "get_owner_record",
    "list_active_records",
    "list_active_summaries",
    "upsert_summary",
]
