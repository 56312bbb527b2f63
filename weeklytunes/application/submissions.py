from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from typing import Optional

from weeklytunes.application.feed import FeedView
from weeklytunes.crosscutting.logging import CorrelationContext, log_error
from weeklytunes.domain.entities import Identity, Submission
from weeklytunes.domain.errors import PermissionDenied, PersistenceError, Unauthorized
from weeklytunes.domain.ports import DocumentStore, IdentityProvider, Subscription
from weeklytunes.domain.submissions import (
    FieldsLike,
    apply_edit,
    build_new,
    can_modify,
    edit_payload,
)


logger = logging.getLogger(__name__)

SONGS_COLLECTION = 'songs'
USERS_COLLECTION = 'users'


class SubmissionService:
    """Submit, edit and delete weekly picks for the signed-in user.

    Holds at most one in-flight edit target, like the submit form it backs.
    Store failures surface as PersistenceError; nothing is retried.
    """

    def __init__(self, identity_provider: IdentityProvider, store: DocumentStore):
        self.identity_provider = identity_provider
        self.store = store
        self.editing: Optional[Submission] = None
        self._profile_label: Optional[str] = None
        self._profile_for: Optional[str] = None

    def _require_identity(self) -> Identity:
        identity = self.identity_provider.current_identity()
        if identity is None:
            raise Unauthorized("Sign in to submit songs")
        return identity

    def load_profile(self) -> str:
        """Label shown for the signed-in user: profile display name, else email."""
        identity = self._require_identity()
        if self._profile_for != identity.id:
            try:
                profile = self.store.get(USERS_COLLECTION, identity.id) or {}
            except PersistenceError as e:
                log_error(logger, 'Failed to load user profile', e, user_id=identity.id)
                profile = {}
            self._profile_label = profile.get('displayName') or identity.label
            self._profile_for = identity.id
        return self._profile_label

    def begin_edit(self, submission: Submission) -> None:
        identity = self._require_identity()
        if not can_modify(submission, identity):
            raise PermissionDenied("Only the submitter can edit this song")
        self.editing = submission

    def cancel_edit(self) -> None:
        self.editing = None

    def submit(self, fields: FieldsLike, now: Optional[datetime] = None) -> Submission:
        """Create a new submission, or apply the pending edit when one is set.

        Raises:
            ValidationError: song or artist empty; nothing is persisted.
            PersistenceError: the store call failed.
        """
        identity = self._require_identity()
        now = now or datetime.now()

        with CorrelationContext(user_id=identity.id, stage='submit'):
            if self.editing is not None:
                edited = apply_edit(self.editing, fields, now)
                try:
                    self.store.update(SONGS_COLLECTION, edited.id, edit_payload(edited))
                except PersistenceError:
                    raise
                except Exception as e:
                    log_error(logger, 'Error saving song', e, submission_id=edited.id)
                    raise PersistenceError('Error saving song. Please try again.') from e
                logger.info(f"Updated submission {edited.id}")
                self.editing = None
                return edited

            submission = build_new(fields, identity, now, owner_label=self.load_profile())
            try:
                doc_id = self.store.create(SONGS_COLLECTION, submission.to_document())
            except PersistenceError:
                raise
            except Exception as e:
                log_error(logger, 'Error saving song', e)
                raise PersistenceError('Error saving song. Please try again.') from e
            logger.info(f"Created submission {doc_id} for {submission.week_label}")
            return replace(submission, id=doc_id)

    def delete(self, submission: Submission) -> None:
        identity = self._require_identity()
        if not can_modify(submission, identity):
            raise PermissionDenied("Only the submitter can delete this song")

        with CorrelationContext(user_id=identity.id, stage='delete'):
            try:
                self.store.delete(SONGS_COLLECTION, submission.id)
            except PersistenceError:
                raise
            except Exception as e:
                log_error(logger, 'Error deleting song', e, submission_id=submission.id)
                raise PersistenceError('Error deleting song. Please try again.') from e
            if self.editing is not None and self.editing.id == submission.id:
                self.editing = None
            logger.info(f"Deleted submission {submission.id}")

    def watch(self, feed: FeedView) -> 'FeedWatch':
        """Push every snapshot of the songs collection, newest first, into ``feed``.

        The store subscription is released when the user signs out and taken
        again on the next sign-in. ``unsubscribe()`` on the returned handle
        stops both for good.
        """
        return FeedWatch(self, feed)

    def clear_session(self) -> None:
        """Drop the pending edit and cached profile of the signed-out user."""
        self.editing = None
        self._profile_for = None


class FeedWatch:
    """Live query of the songs collection that follows the sign-in state."""

    def __init__(self, service: SubmissionService, feed: FeedView):
        self._service = service
        self._feed = feed
        self._subscription: Optional[Subscription] = None
        self._closed = False
        self._auth_subscription = service.identity_provider.on_change(self._on_identity)
        self._subscribe()

    @property
    def active(self) -> bool:
        return self._subscription is not None

    def _on_snapshot(self, docs) -> None:
        self._feed.update(Submission.from_document(d['id'], d) for d in docs)

    def _subscribe(self) -> None:
        self._subscription = self._service.store.subscribe(
            SONGS_COLLECTION, 'createdAt', self._on_snapshot, descending=True)

    def _release(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    def _on_identity(self, identity: Optional[Identity]) -> None:
        if self._closed:
            return
        if identity is None:
            self._release()
            self._service.clear_session()
            logger.debug("Feed paused after sign-out")
        elif self._subscription is None:
            self._subscribe()
            logger.debug(f"Feed resumed for {identity.id}")

    def unsubscribe(self) -> None:
        self._closed = True
        self._release()
        self._auth_subscription.unsubscribe()
