"""
Write dispatch for encoded commands.
"""

import logging

from .adapter import RadioAdapter
from .session import ConnectionSession

logger = logging.getLogger(__name__)


class CommandDispatcher:
    """Sends payloads to the session's negotiated characteristic.

    Unacknowledged writes are used whenever the characteristic supports
    them; acknowledged writes otherwise. Commands issued while not connected
    are dropped, never queued.
    """

    def __init__(self, session: ConnectionSession, adapter: RadioAdapter) -> None:
        self._session = session
        self._adapter = adapter

    def dispatch(self, payload: bytes) -> bool:
        """Write a payload to the connected peripheral.

        Args:
            payload: Encoded command

        Returns:
            True if a write was requested, False if it was dropped
        """
        endpoint = self._session.endpoint
        if not self._session.is_ready or endpoint is None:
            logger.debug(f"Write of {payload!r} dropped: not connected")
            return False

        with_response = not endpoint.supports_unacknowledged
        self._adapter.write(
            endpoint.identifier,
            endpoint.characteristic,
            payload,
            with_response=with_response,
        )
        logger.debug(
            f"Sent {payload!r} to {endpoint.characteristic.uuid} "
            f"({'acknowledged' if with_response else 'unacknowledged'})"
        )
        return True
