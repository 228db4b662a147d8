"""Tests for SubscriptionService."""

from sqlalchemy.orm import Session

from threadbot.models.conversation_subscription import ConversationSubscription
from threadbot.services.subscription_service import SubscriptionService


def test_unknown_conversation_is_not_subscribed(db: Session):
    assert SubscriptionService(db).is_subscribed("slack", "C1:1.0") is False


def test_set_subscribed_twice_is_idempotent(db: Session):
    service = SubscriptionService(db)

    first = service.set_subscribed("slack", "C1:1.0", True)
    second = service.set_subscribed("slack", "C1:1.0", True)

    assert first.id == second.id
    assert service.is_subscribed("slack", "C1:1.0") is True
    assert db.query(ConversationSubscription).count() == 1


def test_unsubscribe_flips_existing_row(db: Session):
    service = SubscriptionService(db)
    service.set_subscribed("telegram", "789", True)

    row = service.set_subscribed("telegram", "789", False)

    assert row.subscribed is False
    assert service.is_subscribed("telegram", "789") is False
    assert db.query(ConversationSubscription).count() == 1


def test_same_id_on_different_platforms_is_independent(db: Session):
    service = SubscriptionService(db)
    service.set_subscribed("telegram", "42", True)

    assert service.is_subscribed("slack", "42") is False


def test_subscriptions_are_tracked_per_conversation(db: Session, faker):
    service = SubscriptionService(db)
    ids = [f"{faker.random_int(min=1000, max=9999)}-{i}" for i in range(3)]
    for conversation_id in ids:
        service.set_subscribed("telegram", conversation_id, True)
    service.set_subscribed("telegram", ids[1], False)

    assert [service.is_subscribed("telegram", c) for c in ids] == [True, False, True]
    assert db.query(ConversationSubscription).count() == 3
