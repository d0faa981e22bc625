"""Tests for the HTTP email relay notifier."""

import json

import httpx
import pytest

from timecapsule.config import NotifierConfig
from timecapsule.notifier import (
    CapsuleNoticePayload,
    HttpNotifier,
    MessagePayload,
    milestone_label,
)


class RelayStub:
    """Records requests and answers with a fixed status code."""

    def __init__(self, status_code: int = 202) -> None:
        self.status_code = status_code
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, json={"id": "msg-1"})

    def body(self, index: int = 0) -> dict:
        return json.loads(self.requests[index].content)


def make_notifier(relay: RelayStub, **config) -> HttpNotifier:
    settings = dict(endpoint="https://relay.example/send", api_key="secret")
    settings.update(config)
    client = httpx.AsyncClient(transport=httpx.MockTransport(relay))
    return HttpNotifier(NotifierConfig(**settings), client=client)


MESSAGE = MessagePayload(
    recipient="sam@example.com",
    body="Happy birthday, kiddo.",
    sender_name="Eleanor Vance",
    recipient_name="Sam",
    event_type="birthday",
)

NOTICE = CapsuleNoticePayload(
    recipient="family@example.com",
    memorial_name="Eleanor Vance",
    title="For your wedding day",
    milestone="wedding",
    memorial_url="https://memorials.example/memorials/1",
)


@pytest.mark.asyncio
async def test_deferred_message_request():
    relay = RelayStub()
    assert await make_notifier(relay).send_deferred_message(MESSAGE)

    request = relay.requests[0]
    assert request.url == "https://relay.example/send"
    assert request.headers["Authorization"] == "Bearer secret"
    body = relay.body()
    assert body["to"] == "sam@example.com"
    assert body["subject"] == "A message from Eleanor Vance"
    assert body["template"] == "future_message"
    assert body["from"] == "noreply@memorials.local"
    assert body["data"]["body"] == "Happy birthday, kiddo."


@pytest.mark.asyncio
async def test_capsule_notice_request():
    relay = RelayStub()
    assert await make_notifier(relay, api_key=None).send_capsule_release_notice(NOTICE)

    assert "Authorization" not in relay.requests[0].headers
    body = relay.body()
    assert body["subject"] == "Video Time Capsule Released: For your wedding day"
    assert body["template"] == "capsule_released"
    assert body["data"]["milestone_label"] == "Wedding"
    assert body["data"]["memorial_url"] == "https://memorials.example/memorials/1"


@pytest.mark.asyncio
async def test_rejected_request_raises():
    relay = RelayStub(status_code=503)
    with pytest.raises(httpx.HTTPStatusError):
        await make_notifier(relay).send_deferred_message(MESSAGE)


@pytest.mark.asyncio
async def test_missing_endpoint_returns_false():
    relay = RelayStub()
    assert not await make_notifier(relay, endpoint=None).send_deferred_message(MESSAGE)
    assert relay.requests == []


def test_milestone_label_fallback():
    assert milestone_label("graduation") == "Graduation"
    assert milestone_label("retirement") == "Special Milestone"
