"""Outbound notifications for released deliverables."""

import logging
from dataclasses import asdict, dataclass
from typing import Any, Optional, Protocol

import httpx

from timecapsule.config import NotifierConfig


logger = logging.getLogger(__name__)

MILESTONE_LABELS = {
    "birthday": "Birthday",
    "graduation": "Graduation",
    "wedding": "Wedding",
    "anniversary": "Anniversary",
    "baby_birth": "Baby Birth",
    "holiday": "Holiday",
    "custom": "Special Milestone",
}


@dataclass
class MessagePayload:
    """Everything needed to deliver a deferred message."""

    recipient: str
    body: str
    sender_name: str
    recipient_name: str
    event_type: str = "custom"
    media_ref: Optional[str] = None
    media_type: Optional[str] = None


@dataclass
class CapsuleNoticePayload:
    """Everything needed to announce a video capsule release."""

    recipient: str
    memorial_name: str
    title: str
    milestone: str
    recipient_name: Optional[str] = None
    memorial_url: Optional[str] = None


class Notifier(Protocol):
    """Notification sender used by the delivery executor.

    Both calls return True once the transport has accepted the message.
    """

    async def send_deferred_message(self, payload: MessagePayload) -> bool: ...

    async def send_capsule_release_notice(self, payload: CapsuleNoticePayload) -> bool: ...


def milestone_label(milestone: str) -> str:
    """Human readable label for a milestone type."""
    return MILESTONE_LABELS.get(milestone, MILESTONE_LABELS["custom"])


class HttpNotifier:
    """Sends notifications through an HTTP email relay."""

    def __init__(
        self,
        config: NotifierConfig,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """Initialize the notifier.

        Args:
            config: Relay endpoint and sender settings.
            client: Optional shared client. One is created per call otherwise.
        """
        self.config = config
        self._client = client

    async def send_deferred_message(self, payload: MessagePayload) -> bool:
        """Relay a deferred message to its recipient."""
        return await self._post(
            {
                "to": payload.recipient,
                "subject": f"A message from {payload.sender_name}",
                "template": "future_message",
                "data": asdict(payload),
            }
        )

    async def send_capsule_release_notice(self, payload: CapsuleNoticePayload) -> bool:
        """Tell the memorial creator that a video capsule was released."""
        data = asdict(payload)
        data["milestone_label"] = milestone_label(payload.milestone)
        return await self._post(
            {
                "to": payload.recipient,
                "subject": f"Video Time Capsule Released: {payload.title}",
                "template": "capsule_released",
                "data": data,
            }
        )

    async def _post(self, message: dict[str, Any]) -> bool:
        """Post a message to the relay.

        Returns:
            True if the relay accepted the message, False if it is not
            configured.

        Raises:
            httpx.HTTPError: If the request fails or the relay rejects it.
        """
        if not self.config.endpoint:
            logger.error("Email relay endpoint not configured")
            return False

        message["from"] = self.config.from_address
        headers = {}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"

        if self._client is not None:
            response = await self._client.post(
                self.config.endpoint, json=message, headers=headers
            )
        else:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    self.config.endpoint, json=message, headers=headers
                )
        response.raise_for_status()
        logger.debug(f"Relay accepted message to {message['to']}")
        return True
