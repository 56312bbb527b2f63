import logging
from typing import Callable, List, Optional

from weeklytunes.domain.entities import Identity
from weeklytunes.infrastructure.store import CallbackSubscription


logger = logging.getLogger(__name__)


class StaticIdentityProvider:
    """Identity provider holding whoever signed in last.

    Stands in for the hosted identity provider in the CLI, in the HTTP
    interface (identity comes from trusted proxy headers) and in tests.
    """

    def __init__(self, identity: Optional[Identity] = None):
        self._identity = identity
        self._callbacks: List[Callable[[Optional[Identity]], None]] = []

    def current_identity(self) -> Optional[Identity]:
        return self._identity

    def on_change(self, callback: Callable[[Optional[Identity]], None]) -> CallbackSubscription:
        self._callbacks.append(callback)
        return CallbackSubscription(self._callbacks, callback)

    def _emit(self) -> None:
        for callback in list(self._callbacks):
            callback(self._identity)

    def sign_in(self, identity: Identity) -> None:
        logger.info(f"Signed in as {identity.id}")
        self._identity = identity
        self._emit()

    def sign_out(self) -> None:
        if self._identity is None:
            return
        logger.info(f"Signed out {self._identity.id}")
        self._identity = None
        self._emit()
