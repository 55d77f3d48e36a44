import pytest

from postsync_api.exceptions import PersistenceError, ValidationError
from postsync_api.services.reconciler import (
    SubscriptionReconciler,
    next_billing_date,
    payment_id_from_payload,
    subscription_entity_from_payload,
)
from tests.conftest import BASIC_PLAN, PRO_PLAN, subscription_entity


@pytest.fixture
def reconciler(store, catalog):
    return SubscriptionReconciler(store, catalog)


def _payload(entity, payment_id=None):
    payload = {"subscription": {"entity": entity}}
    if payment_id:
        payload["payment"] = {"entity": {"id": payment_id}}
    return payload


class TestCharged:
    def test_grants_plan_credits_and_records_billing(self, reconciler, store, user):
        outcome = reconciler.apply("subscription.charged", _payload(subscription_entity(), payment_id="pay_1"))

        assert outcome == {"user_id": user, "subscription_id": "sub_ABC123", "credits_granted": 50}
        document = store.get_user(user)
        assert document["credits"] == 50
        assert document["subscription"]["nextBillingDate"] == "2026-01-01T00:00:00+00:00"
        assert document["subscription"]["paymentId"] == "pay_1"
        assert "lastChargedAt" in document["subscription"]

    def test_replayed_event_grants_again(self, reconciler, store, user):
        payload = _payload(subscription_entity(plan_id=PRO_PLAN))
        reconciler.apply("subscription.charged", payload)
        reconciler.apply("subscription.charged", payload)
        assert store.get_user(user)["credits"] == 300

    def test_unknown_plan_updates_billing_without_credits(self, reconciler, store, user):
        outcome = reconciler.charged(_payload(subscription_entity(plan_id="plan_retired")))
        assert outcome["credits_granted"] == 0
        document = store.get_user(user)
        assert document["credits"] == 0
        assert document["subscription"]["currentEnd"] == "2026-01-01T00:00:00+00:00"

    def test_accepts_unwrapped_subscription(self, reconciler, store, user):
        reconciler.charged({"subscription": subscription_entity()})
        assert store.get_user(user)["credits"] == 50

    def test_missing_user_document_is_an_error(self, reconciler, store):
        with pytest.raises(PersistenceError):
            reconciler.charged(_payload(subscription_entity(user_id="ghost")))
        assert store.get_user("ghost") is None

    def test_missing_notes_user_id_is_rejected(self, reconciler):
        with pytest.raises(ValidationError):
            reconciler.charged(_payload(subscription_entity(user_id=None)))

    def test_missing_subscription_is_rejected(self, reconciler):
        with pytest.raises(ValidationError):
            reconciler.charged({"payment": {"entity": {"id": "pay_1"}}})


class TestStatusEvents:
    @pytest.mark.parametrize(
        "event,status,stamp",
        [
            ("subscription.cancelled", "cancelled", "cancelledAt"),
            ("subscription.paused", "paused", "pausedAt"),
            ("subscription.resumed", "active", "resumedAt"),
        ],
    )
    def test_status_transitions(self, reconciler, store, user, event, status, stamp):
        outcome = reconciler.apply(event, _payload(subscription_entity()))

        assert outcome["status"] == status
        subscription = store.get_user(user)["subscription"]
        assert subscription["status"] == status
        assert stamp in subscription
        assert store.get_user(user)["credits"] == 0

    def test_unknown_event_is_not_handled(self, reconciler):
        assert not reconciler.handles("subscription.halted")
        with pytest.raises(ValueError):
            reconciler.apply("subscription.halted", {})


class TestEndpointWrites:
    def test_record_created(self, reconciler, store, user):
        billing = reconciler.record_created(user, subscription_entity(current_end=None, status="created"))

        subscription = store.get_user(user)["subscription"]
        assert subscription["status"] == "created"
        assert subscription["id"] == "sub_ABC123"
        assert subscription["plan"] == BASIC_PLAN
        # Falls back to charge_at before the first cycle starts.
        assert billing["nextBillingDate"].isoformat() == "2026-01-01T00:00:00+00:00"
        assert billing["currentEnd"] is None

    def test_activate_grants_once_per_call(self, reconciler, store, user):
        outcome = reconciler.activate(subscription_entity(), "pay_9")

        assert outcome["status"] == "active"
        assert outcome["plan_name"] == "Basic"
        assert outcome["credits_granted"] == 50
        document = store.get_user(user)
        assert document["credits"] == 50
        assert document["subscription"]["paymentId"] == "pay_9"
        assert "startedAt" in document["subscription"]

    def test_cancel(self, reconciler, store, user):
        reconciler.cancel(user, "sub_ABC123")
        assert store.get_user(user)["subscription"]["status"] == "cancelled"


def test_next_billing_date_prefers_current_end():
    entity = {"current_end": 1700000000, "charge_at": 1767225600}
    assert next_billing_date(entity).isoformat() == "2023-11-14T22:13:20+00:00"
    assert next_billing_date({}) is None


def test_subscription_entity_requires_object():
    with pytest.raises(ValidationError):
        subscription_entity_from_payload({"subscription": "sub_1"})


def test_payment_id_from_wrapped_and_bare_entities():
    assert payment_id_from_payload({"payment": {"entity": {"id": "pay_1", "entity": "payment"}}}) == "pay_1"
    assert payment_id_from_payload({"payment": {"id": "pay_2", "entity": "payment"}}) == "pay_2"
    assert payment_id_from_payload({}) is None
