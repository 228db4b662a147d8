from threadbot.models.conversation_subscription import ConversationSubscription

__all__ = ["ConversationSubscription"]
