from unittest.mock import MagicMock

import pytest
import requests

from postsync_api.exceptions import UpstreamError, ValidationError
from postsync_api.services.razorpay_client import (
    RazorpayClient,
    looks_like_razorpay_id,
    normalize_currency,
    to_minor_units,
)
from tests.conftest import FakeResponse


def _client(session):
    return RazorpayClient("rzp_test_key", "secret", api_base="https://api.razorpay.com/v1/", session=session)


class TestMinorUnits:
    def test_rounds_half_up_instead_of_truncating(self):
        assert to_minor_units(19.995) == 2000

    def test_whole_and_fractional_amounts(self):
        assert to_minor_units(499) == 49900
        assert to_minor_units(10.5) == 1050
        assert to_minor_units("0.994") == 99
        assert to_minor_units(1.005) == 101

    @pytest.mark.parametrize("amount", [None, 0, -5, "abc", True])
    def test_rejects_missing_or_non_positive_amounts(self, amount):
        with pytest.raises(ValidationError):
            to_minor_units(amount)


def test_normalize_currency_falls_back_to_inr():
    assert normalize_currency("usd") == "USD"
    assert normalize_currency(None) == "INR"
    assert normalize_currency("rupees") == "INR"


def test_looks_like_razorpay_id():
    assert looks_like_razorpay_id("order_DBJOWzybf0sJbb", "order")
    assert not looks_like_razorpay_id("pay_DBJOWzybf0sJbb", "order")
    assert not looks_like_razorpay_id("order_", "order")
    assert not looks_like_razorpay_id(None, "sub")


class TestCreateOrder:
    def test_submits_minor_units_with_auto_capture(self):
        session = MagicMock()
        session.request.return_value = FakeResponse(200, {"id": "order_1", "amount": 2000, "currency": "INR"})

        order = _client(session).create_order(19.995, currency="inr", receipt="rcpt_1", notes={"k": "v"})

        assert order["id"] == "order_1"
        kwargs = session.request.call_args.kwargs
        assert kwargs["method"] == "POST"
        assert kwargs["url"] == "https://api.razorpay.com/v1/orders"
        assert kwargs["auth"] == ("rzp_test_key", "secret")
        assert kwargs["json"] == {
            "amount": 2000,
            "currency": "INR",
            "notes": {"k": "v"},
            "payment_capture": 1,
            "receipt": "rcpt_1",
        }

    def test_missing_amount_is_rejected_before_any_network_call(self):
        session = MagicMock()
        with pytest.raises(ValidationError, match="Amount is required"):
            _client(session).create_order(None)
        session.request.assert_not_called()

    def test_truncates_long_receipts(self):
        session = MagicMock()
        session.request.return_value = FakeResponse(200, {"id": "order_1"})
        _client(session).create_order(1, receipt="r" * 60)
        assert session.request.call_args.kwargs["json"]["receipt"] == "r" * 40


class TestSubscriptions:
    def test_create_subscription_round_trips_user_id_in_notes(self):
        session = MagicMock()
        session.request.return_value = FakeResponse(200, {"id": "sub_1", "plan_id": "plan_1"})

        _client(session).create_subscription("plan_1", "user_9")

        kwargs = session.request.call_args.kwargs
        assert kwargs["url"].endswith("/subscriptions")
        assert kwargs["json"] == {
            "plan_id": "plan_1",
            "total_count": 12,
            "quantity": 1,
            "customer_notify": 1,
            "notes": {"user_id": "user_9"},
        }

    @pytest.mark.parametrize("plan_id,user_id", [(None, "user_1"), ("plan_1", None), ("", "")])
    def test_create_subscription_requires_plan_and_user(self, plan_id, user_id):
        session = MagicMock()
        with pytest.raises(ValidationError):
            _client(session).create_subscription(plan_id, user_id)
        session.request.assert_not_called()

    def test_cancel_subscription_posts_to_cancel_endpoint(self):
        session = MagicMock()
        session.request.return_value = FakeResponse(200, {"id": "sub_1", "status": "cancelled"})

        _client(session).cancel_subscription("sub_1")

        kwargs = session.request.call_args.kwargs
        assert kwargs["url"].endswith("/subscriptions/sub_1/cancel")
        assert kwargs["json"] == {"cancel_at_cycle_end": 0}

    def test_fetch_subscription_uses_get(self):
        session = MagicMock()
        session.request.return_value = FakeResponse(200, {"id": "sub_1"})
        assert _client(session).fetch_subscription("sub_1") == {"id": "sub_1"}
        assert session.request.call_args.kwargs["method"] == "GET"


class TestFailures:
    def test_gateway_error_description_is_attached(self):
        session = MagicMock()
        session.request.return_value = FakeResponse(
            400, {"error": {"code": "BAD_REQUEST_ERROR", "description": "The amount must be atleast INR 1.00"}}
        )
        with pytest.raises(UpstreamError) as excinfo:
            _client(session).create_order(0.5)
        assert excinfo.value.details == "The amount must be atleast INR 1.00"
        assert session.request.call_count == 1

    def test_network_errors_become_upstream_errors_without_retry(self):
        session = MagicMock()
        session.request.side_effect = requests.ConnectionError("connection reset")
        with pytest.raises(UpstreamError) as excinfo:
            _client(session).fetch_subscription("sub_1")
        assert "connection reset" in excinfo.value.details
        assert session.request.call_count == 1

    def test_non_json_response_is_an_upstream_error(self):
        session = MagicMock()
        session.request.return_value = FakeResponse(200, ValueError("not json"))
        with pytest.raises(UpstreamError):
            _client(session).fetch_subscription("sub_1")

    def test_server_error_without_body(self):
        session = MagicMock()
        session.request.return_value = FakeResponse(503, ValueError("no body"))
        with pytest.raises(UpstreamError) as excinfo:
            _client(session).fetch_subscription("sub_1")
        assert excinfo.value.details == "Razorpay responded with HTTP 503"
