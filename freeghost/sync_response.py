"""State request/response exchange between peers and retrying of failed work."""

import asyncio
import json
import logging
import uuid

from freeghost.errors import InvalidMessageError, NetworkError, NodeError
from freeghost.network_types import MessageType, NetworkMessage, NetworkState

logger = logging.getLogger(__name__)

DEFAULT_RESPONSE_TIMEOUT = 10.0


def build_state_request(peer_id, sender="self") -> NetworkMessage:
    """A StateRequest message addressed to ``peer_id``."""
    return NetworkMessage(
        message_type=MessageType.STATE_REQUEST,
        payload=b"",
        sender=sender,
        recipient=str(peer_id),
    )


def build_state_response(request: NetworkMessage, state: NetworkState, sender="self") -> NetworkMessage:
    """A StateResponse answering ``request``; it carries the request's id."""
    return NetworkMessage(
        id=request.id,
        message_type=MessageType.STATE_RESPONSE,
        payload=json.dumps(state.to_dict(), separators=(",", ":")).encode("utf-8"),
        sender=sender,
        recipient=request.sender,
    )


def _state_from_payload(payload: bytes) -> NetworkState:
    try:
        data = json.loads(bytes(payload).decode("utf-8"))
    except ValueError as exc:
        raise InvalidMessageError(str(exc)) from exc
    try:
        return NetworkState.from_dict(data)
    except NodeError as exc:
        raise InvalidMessageError(str(exc)) from exc


class StateResponseHandler:
    """Matches incoming state responses to the requests waiting for them."""

    def __init__(self) -> None:
        self._pending: dict[uuid.UUID, asyncio.Future] = {}

    async def register_pending(self, request_id) -> asyncio.Future:
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        return future

    async def handle_response(self, message: NetworkMessage) -> bool:
        """Deliver the state in ``message``; return whether a request was waiting."""
        state = _state_from_payload(message.payload)
        future = self._pending.pop(message.id, None)
        if future is None or future.done():
            return False
        future.set_result(state)
        return True

    async def wait_for_state(self, request_id, timeout=DEFAULT_RESPONSE_TIMEOUT) -> NetworkState:
        future = self._pending.get(request_id)
        if future is None:
            future = await self.register_pending(request_id)
        try:
            return await asyncio.wait_for(future, timeout)
        except TimeoutError:
            raise NetworkError(f"Response timeout: {request_id}") from None
        finally:
            self._pending.pop(request_id, None)


async def retry_with_backoff(operation, max_retries=3, initial_delay=0.1):
    """Await ``operation()`` up to ``max_retries`` times, doubling the delay before each try."""
    delay = initial_delay
    last_error = None
    for attempt in range(1, max_retries + 1):
        await asyncio.sleep(delay)
        try:
            return await operation()
        except NodeError as exc:
            logger.warning("Retry attempt %d/%d failed: %s", attempt, max_retries, exc)
            last_error = exc
            delay *= 2
    raise NetworkError("Max retries exceeded") from last_error