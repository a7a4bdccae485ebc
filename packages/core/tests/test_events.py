"""Tests for the in-process event bus and the mail gateways."""

import httpx
import pytest

from prgrade_core.errors import GatewayError
from prgrade_core.events import EventBus, EventType
from prgrade_core.mailer import NoOpMailer, ResendMailer, build_mailer


class TestEventBus:
    def test_subscriber_receives_event(self):
        bus = EventBus()
        received = []
        bus.subscribe(EventType.SCORE_READY, lambda t, d: received.append((t, d)))

        delivered = bus.publish(EventType.SCORE_READY, {"submission_id": "s1"})

        assert delivered == 1
        assert received == [(EventType.SCORE_READY, {"submission_id": "s1"})]

    def test_other_event_types_not_delivered(self):
        bus = EventBus()
        received = []
        bus.subscribe(EventType.SCORE_READY, lambda t, d: received.append(t))
        assert bus.publish(EventType.PORTFOLIO_READY, {}) == 0
        assert received == []

    def test_subscribe_all_sees_every_event(self):
        bus = EventBus()
        received = []
        bus.subscribe_all(lambda t, d: received.append(t))
        bus.publish(EventType.SCORE_READY, {})
        bus.publish(EventType.COMPANY_SIGNUP, {})
        assert received == [EventType.SCORE_READY, EventType.COMPANY_SIGNUP]

    def test_publish_accepts_wire_name(self):
        bus = EventBus()
        received = []
        bus.subscribe_all(lambda t, d: received.append(t))
        bus.publish("InterviewRequested", {})
        assert received == [EventType.INTERVIEW_REQUESTED]

    def test_failing_handler_does_not_reach_publisher(self):
        bus = EventBus()
        received = []

        def broken(event_type, data):
            raise RuntimeError("handler bug")

        bus.subscribe(EventType.SCORE_READY, broken)
        bus.subscribe(EventType.SCORE_READY, lambda t, d: received.append(d))

        delivered = bus.publish(EventType.SCORE_READY, {"x": 1})

        assert delivered == 1
        assert received == [{"x": 1}]


# ---------------------------------------------------------------------------
# Mailers
# ---------------------------------------------------------------------------


def _resend(handler):
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return ResendMailer(api_key="re_test", sender="prgrade <noreply@prgrade.dev>", client=client)


class TestResendMailer:
    def test_posts_message(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers["Authorization"]
            seen["url"] = str(request.url)
            return httpx.Response(200, json={"id": "msg_1"})

        message_id = _resend(handler).send("dev@example.com", "Hello", "Body")

        assert message_id == "msg_1"
        assert seen["auth"] == "Bearer re_test"
        assert seen["url"] == ResendMailer.API_URL

    def test_http_error_becomes_gateway_error(self):
        mailer = _resend(lambda request: httpx.Response(500, json={"message": "down"}))
        with pytest.raises(GatewayError):
            mailer.send("dev@example.com", "Hello", "Body")


class TestBuildMailer:
    def test_noop_without_api_key(self):
        assert isinstance(build_mailer({"resend_api_key": None}), NoOpMailer)

    def test_resend_with_api_key(self):
        mailer = build_mailer({"resend_api_key": "re_x", "email_from": "a@b.c"})
        assert isinstance(mailer, ResendMailer)
        mailer.close()

    def test_noop_send_returns_none(self):
        assert NoOpMailer().send("a@b.c", "s", "t") is None
