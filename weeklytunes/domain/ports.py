from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Protocol

from .entities import Credential, Identity, Platform, PlaylistRef, TrackDescriptor


Snapshot = List[Dict[str, Any]]


class Subscription(Protocol):
    """Handle for a standing subscription. Releasing it stops deliveries."""

    def unsubscribe(self) -> None:
        """Stop delivering notifications. Calling it twice is a no-op."""


class IdentityProvider(Protocol):
    """Port for the identity provider issuing the signed-in user."""

    def current_identity(self) -> Optional[Identity]:
        """Return the signed-in user, or None when signed out."""

    def on_change(self, callback: Callable[[Optional[Identity]], None]) -> Subscription:
        """Notify ``callback`` on every sign-in and sign-out."""


class DocumentStore(Protocol):
    """Port for the hosted document store.

    Snapshots are full lists of documents, each a dict with an ``id`` key plus
    the stored fields, in the requested order.
    """

    def subscribe(self, collection: str, order_by: str,
                  callback: Callable[[Snapshot], None],
                  descending: bool = True) -> Subscription:
        """Deliver the ordered collection now and after every change."""

    def create(self, collection: str, data: Dict[str, Any]) -> str:
        """Store a new document and return its generated id."""

    def update(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None:
        """Merge ``fields`` into an existing document."""

    def delete(self, collection: str, doc_id: str) -> None:
        """Remove a document."""

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        """Return a single document's fields, or None."""


class MusicService(Protocol):
    """Port for the connected music-search/playlist service.

    Implementations map provider payloads into domain entities and raise
    Unauthorized or ServiceError from ``domain.errors``.
    """

    platform: Platform

    def get_valid_credential(self) -> Optional[Credential]:
        """Return a non-expired credential, or None."""

    def begin_authorization(self) -> str:
        """Return the URL the user is redirected to for authorization."""

    def complete_authorization(self, code: str) -> Credential:
        """Exchange the redirect's authorization code for a credential and keep it."""

    def revoke_credential(self) -> None:
        """Forget the stored credential."""

    def search(self, query: str) -> List[TrackDescriptor]:
        """Search tracks, best match first."""

    def create_playlist(self, name: str, description: str, track_ids: List[str]) -> PlaylistRef:
        """Create a playlist holding ``track_ids`` in order."""
