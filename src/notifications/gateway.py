"""Push gateway adapters.

The gateway is the only component that talks to the push provider. It is
picked once, at construction time: a ``LiveGateway`` when credentials are
configured, a ``SimulatedGateway`` otherwise. Both implement ``PushGateway``.
"""

from dataclasses import dataclass
from typing import Optional, Protocol, runtime_checkable
import logging
import uuid

import httpx

from src.notifications.config import NotificationType, type_config
from src.notifications.errors import GatewayError
from src.notifications.models import mask_token

logger = logging.getLogger(__name__)

# FCM error codes meaning the token will never work again.
PERMANENT_ERROR_CODES = frozenset({"UNREGISTERED", "SENDER_ID_MISMATCH"})

# INVALID_ARGUMENT is permanent only when it is the token that was rejected
INVALID_TOKEN_MARKERS = ("registration token", "registration_token")


def is_permanent_failure(status_code: int, error_code: str, error_message: str) -> bool:
    """Whether a rejected send means the token is dead for good."""
    if status_code == 404 or error_code in PERMANENT_ERROR_CODES:
        return True
    if error_code == "INVALID_ARGUMENT":
        message = error_message.lower()
        return any(marker in message for marker in INVALID_TOKEN_MARKERS)
    return False


@dataclass
class GatewayConfig:
    """Credentials and endpoints for the live push provider."""

    project_id: str
    access_token: str
    api_url: str = "https://fcm.googleapis.com"
    iid_url: str = "https://iid.googleapis.com"
    timeout_seconds: float = 10.0
    ttl_seconds: int = 86400
    icon: str = "ic_notification"
    web_icon: str = "/icons/icon-192x192.png"
    web_badge: str = "/icons/badge-72x72.png"

    @property
    def send_url(self) -> str:
        return f"{self.api_url}/v1/projects/{self.project_id}/messages:send"


@dataclass
class SendOutcome:
    """Gateway answer for one token."""

    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None
    permanent: bool = False


@dataclass
class TopicSendOutcome:
    """Gateway answer for a topic broadcast."""

    message_id: str
    simulated: bool = False


@dataclass
class BatchOutcome:
    """Gateway answer for a topic (un)subscription of several tokens."""

    success_count: int = 0
    failure_count: int = 0
    errors: Optional[list[str]] = None


@runtime_checkable
class PushGateway(Protocol):
    """Capabilities the dispatcher needs from a push provider."""

    @property
    def simulated(self) -> bool: ...

    async def send_to_token(self, token: str, payload: dict) -> SendOutcome: ...

    async def send_to_topic(self, topic: str, payload: dict) -> TopicSendOutcome: ...

    async def subscribe_tokens(self, tokens: list[str], topic: str) -> BatchOutcome: ...

    async def unsubscribe_tokens(self, tokens: list[str], topic: str) -> BatchOutcome: ...


class SimulatedGateway:
    """Stand-in used when no credentials are configured.

    Every call is logged and answered with synthetic success.
    """

    @property
    def simulated(self) -> bool:
        return True

    async def send_to_token(self, token: str, payload: dict) -> SendOutcome:
        logger.info(
            "[SIMULATED] push to %s: %s",
            mask_token(token),
            payload.get("notification", {}).get("title"),
        )
        return SendOutcome(success=True, message_id=f"simulated_{uuid.uuid4().hex[:12]}")

    async def send_to_topic(self, topic: str, payload: dict) -> TopicSendOutcome:
        logger.info(
            "[SIMULATED] topic '%s': %s",
            topic,
            payload.get("notification", {}).get("title"),
        )
        return TopicSendOutcome(message_id=f"simulated_{uuid.uuid4().hex[:12]}", simulated=True)

    async def subscribe_tokens(self, tokens: list[str], topic: str) -> BatchOutcome:
        logger.info("[SIMULATED] subscribe %d tokens to '%s'", len(tokens), topic)
        return BatchOutcome(success_count=len(tokens))

    async def unsubscribe_tokens(self, tokens: list[str], topic: str) -> BatchOutcome:
        logger.info("[SIMULATED] unsubscribe %d tokens from '%s'", len(tokens), topic)
        return BatchOutcome(success_count=len(tokens))

    async def aclose(self) -> None:
        return None


class LiveGateway:
    """FCM HTTP v1 gateway over httpx."""

    def __init__(
        self,
        config: GatewayConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._config = config
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def simulated(self) -> bool:
        return False

    @property
    def config(self) -> GatewayConfig:
        return self._config

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._config.timeout_seconds,
                transport=self._transport,
                headers={
                    "Authorization": f"Bearer {self._config.access_token}",
                    "Content-Type": "application/json",
                },
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def build_message(self, payload: dict) -> dict:
        """Wrap a neutral payload with the per-platform envelopes."""
        data = payload.get("data", {})
        try:
            notification_type = NotificationType(data.get("type", "general"))
        except ValueError:
            notification_type = NotificationType.GENERAL
        presentation = type_config(notification_type)
        notification = payload.get("notification", {})

        return {
            "notification": notification,
            "data": data,
            "android": {
                "priority": "high" if presentation["priority"] == "high" else "normal",
                "ttl": f"{self._config.ttl_seconds}s",
                "notification": {
                    "icon": self._config.icon,
                    "color": presentation["color"],
                    "sound": presentation["sound"],
                    "channel_id": notification_type.value,
                },
            },
            "apns": {
                "headers": {
                    "apns-priority": "10" if presentation["priority"] == "high" else "5",
                },
                "payload": {
                    "aps": {
                        "sound": presentation["sound"],
                        "badge": 1,
                        "category": notification_type.value,
                    }
                },
            },
            "webpush": {
                "headers": {"TTL": str(self._config.ttl_seconds)},
                "notification": {
                    "title": notification.get("title"),
                    "body": notification.get("body"),
                    "icon": self._config.web_icon,
                    "badge": self._config.web_badge,
                },
            },
        }

    async def send_to_token(self, token: str, payload: dict) -> SendOutcome:
        message = self.build_message(payload)
        message["token"] = token

        try:
            resp = await self._get_client().post(self._config.send_url, json={"message": message})
        except httpx.HTTPError as e:
            logger.warning("Push to %s failed: %s", mask_token(token), e)
            return SendOutcome(success=False, error=f"{type(e).__name__}: {e}")

        if resp.status_code == 200:
            return SendOutcome(success=True, message_id=resp.json().get("name"))

        error_code, error_message = _parse_fcm_error(resp)
        permanent = is_permanent_failure(resp.status_code, error_code, error_message)
        logger.warning(
            "Push to %s rejected: %s %s (%s)",
            mask_token(token),
            resp.status_code,
            error_code,
            "permanent" if permanent else "transient",
        )
        return SendOutcome(
            success=False,
            error=f"{error_code}: {error_message}",
            permanent=permanent,
        )

    async def send_to_topic(self, topic: str, payload: dict) -> TopicSendOutcome:
        message = self.build_message(payload)
        message["topic"] = topic

        try:
            resp = await self._get_client().post(self._config.send_url, json={"message": message})
        except httpx.HTTPError as e:
            raise GatewayError(f"Topic send failed: {e}", topic=topic) from e

        if resp.status_code != 200:
            error_code, error_message = _parse_fcm_error(resp)
            raise GatewayError(
                f"Topic send rejected: {error_code}: {error_message}",
                topic=topic,
                status_code=resp.status_code,
            )

        return TopicSendOutcome(message_id=resp.json().get("name", ""))

    async def subscribe_tokens(self, tokens: list[str], topic: str) -> BatchOutcome:
        return await self._batch_topic("batchAdd", tokens, topic)

    async def unsubscribe_tokens(self, tokens: list[str], topic: str) -> BatchOutcome:
        return await self._batch_topic("batchRemove", tokens, topic)

    async def _batch_topic(self, operation: str, tokens: list[str], topic: str) -> BatchOutcome:
        if not tokens:
            return BatchOutcome()

        try:
            resp = await self._get_client().post(
                f"{self._config.iid_url}/iid/v1:{operation}",
                json={"to": f"/topics/{topic}", "registration_tokens": tokens},
                headers={"access_token_auth": "true"},
            )
        except httpx.HTTPError as e:
            raise GatewayError(f"Topic {operation} failed: {e}", topic=topic) from e

        if resp.status_code != 200:
            raise GatewayError(
                f"Topic {operation} rejected with status {resp.status_code}",
                topic=topic,
                status_code=resp.status_code,
            )

        results = resp.json().get("results", [])
        errors = [r["error"] for r in results if r.get("error")]
        return BatchOutcome(
            success_count=len(tokens) - len(errors),
            failure_count=len(errors),
            errors=errors or None,
        )


def _parse_fcm_error(resp: httpx.Response) -> tuple[str, str]:
    """Extract the FCM error code and message from an error response."""
    try:
        error = resp.json().get("error", {})
    except ValueError:
        return f"HTTP_{resp.status_code}", resp.text[:200]

    code = error.get("status") or f"HTTP_{resp.status_code}"
    for detail in error.get("details", []):
        if detail.get("errorCode"):
            code = detail["errorCode"]
            break
    return code, error.get("message", "")


def create_gateway(
    config: Optional[GatewayConfig],
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> PushGateway:
    """Pick the live gateway when configured, the simulated one otherwise."""
    if config is None or not config.project_id or not config.access_token:
        logger.warning("Push gateway credentials incomplete, simulation mode enabled")
        return SimulatedGateway()

    logger.info("Push gateway initialized for project %s", config.project_id)
    return LiveGateway(config, transport=transport)
