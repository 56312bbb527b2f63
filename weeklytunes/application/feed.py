from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

from weeklytunes.domain.entities import Submission


logger = logging.getLogger(__name__)


def count_by_owner(records: Iterable[Submission]) -> Dict[str, int]:
    """Count submissions per owner display name.

    Keyed by the display-name snapshot stored on each record, so two accounts
    sharing a display name are counted together.
    """
    counts: Dict[str, int] = {}
    for record in records:
        counts[record.owner_display_name] = counts.get(record.owner_display_name, 0) + 1
    return counts


def matches(record: Submission, term: str) -> bool:
    needle = term.lower()
    return any(
        needle in (value or '').lower()
        for value in (record.song_name, record.artist_name, record.owner_display_name, record.platform.value)
    )


def search(records: Iterable[Submission], term: Optional[str]) -> List[Submission]:
    """Case-insensitive substring search over song, artist, owner and platform.

    An empty term matches everything. Surrounding whitespace is part of the
    term, so a lone space only matches values that contain one. Input order
    is kept.
    """
    records = list(records)
    if not term:
        return records
    return [r for r in records if matches(r, term)]


class FeedView:
    """Derived feed state over the latest snapshot of submissions.

    Every snapshot replaces the previous one wholesale; filtered results and
    counts are recomputed lazily on first access after a change.
    """

    def __init__(self, term: str = ''):
        self._records: List[Submission] = []
        self._term = term
        self._filtered: Optional[List[Submission]] = None
        self._counts: Optional[Dict[str, int]] = None
        self.snapshots_received = 0

    def update(self, records: Iterable[Submission]) -> None:
        """Replace the record set with a new full snapshot."""
        self._records = list(records)
        self.snapshots_received += 1
        self._invalidate()
        logger.debug(f"Feed snapshot #{self.snapshots_received} with {len(self._records)} submissions")

    def set_term(self, term: Optional[str]) -> None:
        term = term or ''
        if term != self._term:
            self._term = term
            self._filtered = None

    def clear_term(self) -> None:
        self.set_term('')

    def _invalidate(self) -> None:
        self._filtered = None
        self._counts = None

    @property
    def term(self) -> str:
        return self._term

    @property
    def records(self) -> List[Submission]:
        return list(self._records)

    @property
    def total(self) -> int:
        return len(self._records)

    @property
    def filtered(self) -> List[Submission]:
        if self._filtered is None:
            self._filtered = search(self._records, self._term)
        return list(self._filtered)

    @property
    def counts(self) -> Dict[str, int]:
        if self._counts is None:
            self._counts = count_by_owner(self._records)
        return dict(self._counts)

    def find(self, submission_id: str) -> Optional[Submission]:
        return next((r for r in self._records if r.id == submission_id), None)

    def empty_message(self) -> str:
        """Message shown when the filtered feed is empty."""
        if self._term:
            return 'No songs match your search.'
        return 'No songs submitted yet. Be the first!'
