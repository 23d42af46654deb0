"""Push notification sender using APNs.

Mobile clients subscribe to a lock's topic (its session token) through the
push-devices API. Door events fan out to every enabled subscription on that
topic. Dispatch from the device session is fire-and-forget: the caller gets
no result and never sees a delivery failure.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Set

from aioapns import APNs, NotificationRequest, PushType
from sqlalchemy import select

from ..database import async_session
from ..models.push_device import PushDevice

logger = logging.getLogger(__name__)


@dataclass
class PushConfig:
    """APNs configuration."""
    enabled: bool = False
    key_path: str = ""  # Path to .p8 key file
    key_id: str = ""
    team_id: str = ""
    bundle_id: str = ""
    use_sandbox: bool = True  # Use sandbox for development
    door_opened_title: str = "Door opened"
    door_opened_body: str = "Door opened by {who}"

    @classmethod
    def from_settings(cls, settings) -> "PushConfig":
        return cls(
            enabled=settings.push_enabled,
            key_path=settings.apns_key_path,
            key_id=settings.apns_key_id,
            team_id=settings.apns_team_id,
            bundle_id=settings.apns_bundle_id,
            use_sandbox=settings.apns_use_sandbox,
            door_opened_title=settings.push_door_opened_title,
            door_opened_body=settings.push_door_opened_body,
        )


class PushSenderService:
    """Service for sending door notifications via APNs."""

    def __init__(self, session_factory=async_session):
        self._client: Optional[APNs] = None
        self._config: PushConfig = PushConfig()
        self._session_factory = session_factory
        self._pending: Set[asyncio.Task] = set()

    def configure(self, config: PushConfig):
        """Configure the APNs client."""
        self._config = config
        self._client = None  # Reset client to force reconnection

        if not config.enabled:
            logger.info("Push notifications are disabled")
            return

        if not all([config.key_path, config.key_id, config.team_id, config.bundle_id]):
            logger.warning("Push notifications enabled but APNs not fully configured")
            return

        try:
            self._client = APNs(
                key=config.key_path,
                key_id=config.key_id,
                team_id=config.team_id,
                topic=config.bundle_id,
                use_sandbox=config.use_sandbox,
            )
            logger.info(f"APNs client configured (sandbox={config.use_sandbox})")
        except Exception as e:
            logger.error(f"Failed to configure APNs client: {e}")
            self._client = None

    @property
    def enabled(self) -> bool:
        return self._client is not None and self._config.enabled

    async def send_notification(
        self,
        device_token: str,
        title: str,
        body: str,
        data: Optional[dict] = None,
    ) -> bool:
        """Send a push notification to a single device.

        Returns:
            True if notification was sent successfully
        """
        if not self.enabled:
            logger.debug("Push notifications not configured, skipping")
            return False

        try:
            payload = {"aps": {"alert": {"title": title, "body": body}, "sound": "default"}}
            if data:
                payload.update(data)

            request = NotificationRequest(
                device_token=device_token,
                message=payload,
                push_type=PushType.ALERT,
            )

            response = await self._client.send_notification(request)

            if response.is_successful:
                logger.info(f"Push notification sent to {device_token[:16]}...")
                return True
            logger.warning(
                f"Push notification failed: {response.description} "
                f"(token: {device_token[:16]}...)"
            )
            return False

        except Exception as e:
            logger.error(f"Failed to send push notification: {e}")
            return False

    async def send_to_topic(
        self,
        topic: str,
        title: str,
        body: str,
        data: Optional[dict] = None,
    ) -> tuple[int, int]:
        """Send a notification to every enabled device subscribed to a topic.

        Returns:
            Tuple of (success_count, failure_count)
        """
        if not self.enabled:
            return (0, 0)

        async with self._session_factory() as session:
            result = await session.execute(
                select(PushDevice.device_token).where(
                    PushDevice.topic == topic,
                    PushDevice.enabled == 1,
                )
            )
            device_tokens = list(result.scalars().all())

        if not device_tokens:
            logger.debug(f"No push subscriptions for topic {topic[:4]}...")
            return (0, 0)

        success_count = 0
        failure_count = 0
        for device_token in device_tokens:
            if await self.send_notification(device_token, title, body, data):
                success_count += 1
            else:
                failure_count += 1

        logger.info(
            f"Push notifications sent: {success_count} success, {failure_count} failed"
        )
        return (success_count, failure_count)

    def dispatch(self, topic: str, title: str, body: str, data: Optional[dict] = None) -> None:
        """Queue a topic notification in the background and return immediately."""
        self._spawn(self._deliver(topic, lambda: (title, body), data))

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, topic: str, render, data: Optional[dict]):
        try:
            title, body = render()
            await self.send_to_topic(topic, title, body, data)
        except Exception:
            logger.exception(f"Push delivery to topic {topic[:4]}... failed")

    def _render_door_opened(self, who: str):
        return (
            self._config.door_opened_title,
            self._config.door_opened_body.format(who=who),
        )

    def notify_door_opened(self, topic: str, who: str) -> None:
        """Tell a lock's subscribers who opened the door.

        The templates are rendered inside the background task, so a bad
        template is logged there and never reaches the caller.
        """
        self._spawn(
            self._deliver(
                topic,
                lambda: self._render_door_opened(who),
                {"event": "door_opened", "who": who},
            )
        )


# Global instance
push_sender_service = PushSenderService()
