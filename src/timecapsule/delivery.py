"""Hands due deliverables to the notification sender."""

import asyncio
import logging
from typing import Callable, Optional

from timecapsule.config import DeliveryConfig
from timecapsule.families import Payload, ReleaseFamily
from timecapsule.models import (
    Deliverable,
    DeliveryErrorKind,
    DeliveryOutcome,
    Memorial,
)


logger = logging.getLogger(__name__)

OwnerLookup = Callable[[int], Optional[Memorial]]


class DeliveryExecutor:
    """Attempts delivery of a single deliverable and classifies the result.

    Delivery problems never raise out of ``attempt``: they are reported as a
    DeliveryOutcome so the state machine can treat all items the same way.
    Each send is bounded by a timeout and retried with exponential backoff.
    """

    BACKOFF_MULTIPLIER = 2.0

    def __init__(
        self,
        get_owner: OwnerLookup,
        config: Optional[DeliveryConfig] = None,
    ) -> None:
        """Initialize the executor.

        Args:
            get_owner: Looks up the owning memorial by ID.
            config: Timeout and retry settings.
        """
        self.get_owner = get_owner
        self.config = config or DeliveryConfig()

    async def attempt(self, family: ReleaseFamily, deliverable: Deliverable) -> DeliveryOutcome:
        """Try to deliver one deliverable.

        Args:
            family: The family the deliverable belongs to.
            deliverable: The due deliverable.

        Returns:
            DeliveryOutcome describing whether the notification went out.

        Raises:
            StoreError: If the owner lookup fails. Nothing has been sent yet,
                so the item can be retried whole.
        """
        memorial = self.get_owner(deliverable.owner_id)
        if memorial is None:
            logger.error(f"Memorial {deliverable.owner_id} not found for {deliverable.label}")
            return DeliveryOutcome.failure(
                DeliveryErrorKind.OWNER_NOT_FOUND, "Memorial not found", attempts=0
            )

        payload = family.build_payload(deliverable, memorial)
        if payload is None:
            logger.warning(f"No recipient address for {deliverable.label}")
            return DeliveryOutcome.failure(
                DeliveryErrorKind.NO_RECIPIENT, "No recipient email provided", attempts=0
            )

        return await self._send_with_retry(family, deliverable, payload)

    async def _send_with_retry(
        self,
        family: ReleaseFamily,
        deliverable: Deliverable,
        payload: Payload,
    ) -> DeliveryOutcome:
        """Send a payload with a per-attempt timeout and exponential backoff."""
        max_retries = self.config.max_retries
        last_error = ""
        for attempt in range(1, max_retries + 1):
            try:
                result = await asyncio.wait_for(
                    family.send(payload), timeout=self.config.timeout_seconds
                )
                if result:
                    logger.info(f"Delivered {deliverable.label} on attempt {attempt}")
                    return DeliveryOutcome.success(attempts=attempt)
                last_error = "Notification sender did not accept the message"
            except asyncio.CancelledError:
                raise
            except asyncio.TimeoutError:
                last_error = f"Timed out after {self.config.timeout_seconds}s"
            except Exception as e:
                last_error = str(e) or type(e).__name__

            if attempt < max_retries:
                backoff_time = min(
                    self.config.initial_backoff_seconds
                    * (self.BACKOFF_MULTIPLIER ** (attempt - 1)),
                    self.config.max_backoff_seconds,
                )
                logger.warning(
                    f"Attempt {attempt}/{max_retries} failed for {deliverable.label}: "
                    f"{last_error}. Retrying in {backoff_time:.1f}s"
                )
                await asyncio.sleep(backoff_time)

        logger.error(
            f"All {max_retries} attempts failed for {deliverable.label}: {last_error}"
        )
        return DeliveryOutcome.failure(
            DeliveryErrorKind.TRANSPORT_FAILURE, last_error, attempts=max_retries
        )
