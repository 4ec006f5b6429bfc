"""
Signer Session - the connected identity for this process.

Owns the connect/disconnect lifecycle of a Signer. One session holds at most
one identity; switching identities means disconnect then connect.
"""

from __future__ import annotations

import asyncio
from typing import Callable, List, Optional

from ...utils.logging_setup import get_logger
from ..exceptions import NoSignerAvailable, UserRejected
from ..interfaces.signer import Signer, first_account


logger = get_logger(__name__)

DisconnectListener = Callable[[str], None]


class SignerSession:
    """
    Connected signer identity.

    - connect() is idempotent: once connected it returns the identity
      without prompting again. Concurrent connects share a single prompt.
    - restore() re-attaches an already-authorized account without prompting.
    - disconnect() notifies listeners so in-flight polling for the identity
      can be cancelled.
    """

    def __init__(self, signer: Optional[Signer]):
        """
        Initialize session.

        Args:
            signer: Signing capability, or None when the environment has none.
        """
        self._signer = signer
        self._identity: Optional[str] = None
        self._connect_lock = asyncio.Lock()
        self._listeners: List[DisconnectListener] = []

    @property
    def signer(self) -> Signer:
        """
        The underlying signer.

        Raises:
            NoSignerAvailable: If no signer is configured.
        """
        if self._signer is None:
            raise NoSignerAvailable("No signer available in this environment")
        return self._signer

    @property
    def has_signer(self) -> bool:
        return self._signer is not None

    def current_identity(self) -> Optional[str]:
        return self._identity

    def is_connected(self) -> bool:
        return self._identity is not None

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def connect(self) -> str:
        """
        Connect and return the active identity.

        Raises:
            NoSignerAvailable: No signer capability exists.
            UserRejected: The user declined, or authorized no account.
        """
        if self._identity is not None:
            return self._identity

        signer = self.signer

        async with self._connect_lock:
            # Another connect may have completed while we waited
            if self._identity is not None:
                return self._identity

            logger.info("Requesting signer accounts")
            accounts = await signer.request_accounts()
            identity = first_account(accounts)
            if identity is None:
                raise UserRejected("Signer returned no authorized accounts")

            self._identity = identity
            logger.info(f"Signer connected: {identity}")
            return identity

    async def restore(self) -> Optional[str]:
        """
        Attach an already-authorized account without prompting.

        Returns:
            The identity, or None if nothing is authorized or no signer exists.
        """
        if self._identity is not None:
            return self._identity
        if self._signer is None:
            return None

        async with self._connect_lock:
            if self._identity is not None:
                return self._identity
            identity = first_account(await self._signer.list_accounts())
            if identity is not None:
                self._identity = identity
                logger.info(f"Restored signer session for {identity}")
            return identity

    async def disconnect(self) -> Optional[str]:
        """
        Drop the active identity and notify listeners.

        Already-broadcast transactions are not affected; only local tracking
        is cancelled by listeners.

        Returns:
            The identity that was disconnected, or None.
        """
        identity = self._identity
        if identity is None:
            return None

        self._identity = None
        for listener in list(self._listeners):
            try:
                listener(identity)
            except Exception as e:
                logger.error(f"Disconnect listener failed for {identity}: {e}", exc_info=True)

        logger.info(f"Signer disconnected: {identity}")
        return identity

    def add_disconnect_listener(self, listener: DisconnectListener) -> None:
        """Register a callback invoked with the identity being disconnected."""
        self._listeners.append(listener)

    def remove_disconnect_listener(self, listener: DisconnectListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)
