from __future__ import annotations

import logging
import re
from datetime import datetime
from enum import Enum
from typing import Iterable, List, Optional

from weeklytunes.crosscutting.logging import CorrelationContext, log_with_fields
from weeklytunes.domain.entities import PlaylistRef, Submission, TrackDescriptor
from weeklytunes.domain.errors import (
    NoEligibleSubmissions,
    NoResolvableTracks,
    PlaylistCreationFailed,
    ServiceError,
    Unauthorized,
)
from weeklytunes.domain.ports import MusicService
from weeklytunes.domain.weeks import week_label


logger = logging.getLogger(__name__)


PLAYLIST_NAME_PREFIX = "Weekly Tunes"
PLAYLIST_DESCRIPTION = "Collaborative playlist created by the Weekly Tunes group"

# Track id is the path segment after "track/", e.g. https://open.spotify.com/track/<id>?si=...
_TRACK_ID_PATTERN = re.compile(r"track/([a-zA-Z0-9]+)")


def extract_track_id(link: Optional[str]) -> Optional[str]:
    """Pull the service-native track id out of a free-text link, or None."""
    if not link:
        return None
    match = _TRACK_ID_PATTERN.search(link)
    return match.group(1) if match else None


def playlist_name(label: str) -> str:
    return f"{PLAYLIST_NAME_PREFIX} - {label}"


def eligible_submissions(records: Iterable[Submission], label: str, platform) -> List[Submission]:
    """Submissions of week ``label`` on ``platform`` that carry a link."""
    return [
        r for r in records
        if r.week_label == label and r.platform == platform and r.link
    ]


def assemble_weekly_playlist(records: Iterable[Submission], now: datetime,
                             session: MusicService) -> PlaylistRef:
    """Create a playlist on ``session`` from this week's eligible submissions.

    Raises:
        NoEligibleSubmissions: nothing this week targets the service; it is not contacted.
        NoResolvableTracks: eligible submissions exist but no link yields a track id.
        PlaylistCreationFailed: the service call failed; ``unauthorized`` tells
            whether the credential was rejected.
    """
    label = week_label(now)
    platform = session.platform

    with CorrelationContext(week_label=label, stage='playlist'):
        eligible = eligible_submissions(records, label, platform)
        if not eligible:
            logger.info(f"No eligible {platform.value} submissions for {label}")
            raise NoEligibleSubmissions(label, platform.value)

        track_ids: List[str] = []
        for record in eligible:
            track_id = extract_track_id(record.link)
            if track_id is None:
                logger.debug(f"Skipping submission {record.id}: link does not point at a track")
                continue
            track_ids.append(track_id)

        if not track_ids:
            raise NoResolvableTracks(label, skipped=len(eligible))

        log_with_fields(logger, 'INFO', 'Creating weekly playlist', {
            'eligible': len(eligible),
            'tracks': len(track_ids),
            'skipped': len(eligible) - len(track_ids),
        })

        try:
            playlist = session.create_playlist(playlist_name(label), PLAYLIST_DESCRIPTION, track_ids)
        except Unauthorized as e:
            logger.warning(f"Playlist creation rejected credential: {e}")
            raise PlaylistCreationFailed(unauthorized=True) from e
        except ServiceError as e:
            logger.error(f"Playlist creation failed: {e}")
            raise PlaylistCreationFailed() from e

        logger.info(f"Created playlist {playlist.id} with {len(track_ids)} tracks")
        return playlist


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"


class ServiceConnection:
    """Connection state of the music service as seen by the app.

    Connected once a valid credential is obtained or recovered; back to
    Disconnected on explicit disconnect or when any call reports an
    authorization failure.
    """

    def __init__(self, session: MusicService):
        self.session = session
        self.state = ConnectionState.DISCONNECTED

    @property
    def connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    def _mark_disconnected(self, reason: str) -> None:
        if self.connected:
            logger.warning(f"{self.session.platform.value} disconnected: {reason}")
        self.state = ConnectionState.DISCONNECTED

    def refresh(self) -> ConnectionState:
        """Re-evaluate the state from the stored credential."""
        if self.session.get_valid_credential() is not None:
            self.state = ConnectionState.CONNECTED
        else:
            self._mark_disconnected('no valid credential')
        return self.state

    def connect_url(self) -> str:
        return self.session.begin_authorization()

    def complete_authorization(self, code: str) -> ConnectionState:
        self.session.complete_authorization(code)
        return self.refresh()

    def disconnect(self) -> None:
        self.session.revoke_credential()
        self._mark_disconnected('disconnect requested')

    def _require_connected(self) -> None:
        if not self.connected:
            raise Unauthorized(f"Please connect to {self.session.platform.value} first!")

    def search(self, query: str) -> List[TrackDescriptor]:
        """Search the service. Blank queries return nothing without a call."""
        if not query or not query.strip():
            return []
        self._require_connected()
        try:
            return self.session.search(query.strip())
        except Unauthorized:
            self._mark_disconnected('search unauthorized')
            raise

    def create_weekly_playlist(self, records: Iterable[Submission], now: datetime) -> PlaylistRef:
        self._require_connected()
        try:
            return assemble_weekly_playlist(records, now, self.session)
        except PlaylistCreationFailed as e:
            if e.unauthorized:
                self._mark_disconnected('playlist creation unauthorized')
            raise
