from chatdesk.db.store import (
    ChatStore, ConversationNotFound, Delivery, OperatorProtected, StoreError, UserNotFound,
)

__all__ = ["ChatStore", "ConversationNotFound", "Delivery", "OperatorProtected", "StoreError", "UserNotFound"]
