from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Any, Mapping, Optional, Union

from .entities import Identity, Platform, Submission, SubmissionFields, TrackDescriptor
from .errors import ValidationError
from .weeks import week_label


FieldsLike = Union[SubmissionFields, Mapping[str, Any]]


def timestamp(now: datetime) -> str:
    return now.isoformat()


def _text(field: str, value: Any) -> str:
    if value is None:
        return ''
    if not isinstance(value, str):
        raise ValidationError(field, 'Must be text')
    return value.strip()


def coerce_fields(fields: FieldsLike) -> SubmissionFields:
    """Normalize form input into SubmissionFields and validate it.

    Accepts either a SubmissionFields or a mapping using the form keys
    (``songName``/``artist``) or the attribute names (``song_name``/``artist_name``).
    Raises ValidationError when song or artist is empty or whitespace-only,
    when a text field holds something other than a string, or when the
    platform is not one of the supported ones.
    """
    if isinstance(fields, SubmissionFields):
        raw_song, raw_artist = fields.song_name, fields.artist_name
        raw_platform, raw_link = fields.platform, fields.link
    elif isinstance(fields, Mapping):
        raw_song = fields.get('song_name', fields.get('songName'))
        raw_artist = fields.get('artist_name', fields.get('artist', fields.get('artistName')))
        raw_platform = fields.get('platform')
        raw_link = fields.get('link')
    else:
        raise ValidationError('body', 'Expected an object with submission fields')

    song_name = _text('songName', raw_song)
    artist_name = _text('artist', raw_artist)
    if not song_name:
        raise ValidationError('songName', 'Song name is required')
    if not artist_name:
        raise ValidationError('artist', 'Artist is required')

    try:
        platform = Platform.parse(raw_platform)
    except ValueError as e:
        raise ValidationError('platform', str(e)) from e

    link = _text('link', raw_link) or None
    return SubmissionFields(song_name=song_name, artist_name=artist_name, platform=platform, link=link)


def build_new(fields: FieldsLike, owner: Identity, now: datetime,
              owner_label: Optional[str] = None) -> Submission:
    """Build a new submission stamped with the week of ``now``.

    ``owner_label`` overrides the identity's label, e.g. with the display
    name from the user's profile document.
    """
    clean = coerce_fields(fields)
    return Submission(
        owner_id=owner.id,
        owner_display_name=owner_label or owner.label,
        song_name=clean.song_name,
        artist_name=clean.artist_name,
        platform=clean.platform,
        link=clean.link,
        week_label=week_label(now),
        created_at=timestamp(now),
    )


def apply_edit(existing: Submission, fields: FieldsLike, now: datetime) -> Submission:
    """Replace the editable fields of ``existing``; identity, week and creation time never change."""
    clean = coerce_fields(fields)
    return replace(
        existing,
        song_name=clean.song_name,
        artist_name=clean.artist_name,
        platform=clean.platform,
        link=clean.link,
        updated_at=timestamp(now),
    )


def edit_payload(edited: Submission) -> dict:
    """Partial document sent to the store for an edit."""
    return {
        'songName': edited.song_name,
        'artist': edited.artist_name,
        'platform': edited.platform.value,
        'link': edited.link or '',
        'updatedAt': edited.updated_at,
    }


def can_modify(submission: Submission, identity: Optional[Identity]) -> bool:
    """Whether edit/delete affordances are offered to ``identity``.

    Presentation check only; the store's access rules enforce ownership.
    """
    return identity is not None and bool(identity.id) and submission.owner_id == identity.id


def fields_from_track(track: TrackDescriptor) -> SubmissionFields:
    """Prefill the submit form from a search result."""
    return SubmissionFields(
        song_name=track.name,
        artist_name=', '.join(track.artists),
        platform=Platform.SPOTIFY,
        link=track.external_link or None,
    )
