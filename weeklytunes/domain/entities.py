from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional


class Platform(str, Enum):
    """Streaming platforms a submission can point at."""

    SPOTIFY = "Spotify"
    APPLE_MUSIC = "Apple Music"
    YOUTUBE_MUSIC = "YouTube Music"
    DEEZER = "Deezer"
    SOUNDCLOUD = "SoundCloud"
    OTHER = "Other"

    @classmethod
    def parse(cls, value: Any) -> "Platform":
        """Resolve a platform from its display value or enum name, case-insensitively."""
        if isinstance(value, Platform):
            return value
        if value is None or not str(value).strip():
            return cls.SPOTIFY
        text = str(value).strip().lower()
        for member in cls:
            if text in (member.value.lower(), member.name.lower()):
                return member
        raise ValueError(f"Unknown platform: {value}")


@dataclass(frozen=True)
class Identity:
    """Authenticated user as reported by the identity provider."""

    id: str
    email: str = ""
    display_name: Optional[str] = None

    @property
    def label(self) -> str:
        return self.display_name or self.email


@dataclass(frozen=True)
class SubmissionFields:
    """Editable part of a submission, as entered in the submit form."""

    song_name: str = ""
    artist_name: str = ""
    platform: Platform = Platform.SPOTIFY
    link: Optional[str] = None


@dataclass(frozen=True)
class Submission:
    """One user's weekly music pick."""

    owner_id: str
    owner_display_name: str
    song_name: str
    artist_name: str
    week_label: str
    created_at: str
    platform: Platform = Platform.SPOTIFY
    link: Optional[str] = None
    updated_at: Optional[str] = None
    id: Optional[str] = None

    def to_document(self) -> Dict[str, Any]:
        """Map to the stored document shape. The id lives outside the document."""
        doc = {
            'user': self.owner_display_name,
            'userId': self.owner_id,
            'songName': self.song_name,
            'artist': self.artist_name,
            'platform': self.platform.value,
            'link': self.link or '',
            'week': self.week_label,
            'createdAt': self.created_at,
        }
        if self.updated_at:
            doc['updatedAt'] = self.updated_at
        return doc

    @classmethod
    def from_document(cls, doc_id: str, data: Dict[str, Any]) -> "Submission":
        try:
            platform = Platform.parse(data.get('platform'))
        except ValueError:
            platform = Platform.OTHER
        return cls(
            id=doc_id,
            owner_id=data.get('userId', ''),
            owner_display_name=data.get('user', ''),
            song_name=data.get('songName', ''),
            artist_name=data.get('artist', ''),
            platform=platform,
            link=data.get('link') or None,
            week_label=data.get('week', ''),
            created_at=data.get('createdAt', ''),
            updated_at=data.get('updatedAt'),
        )


@dataclass(frozen=True)
class TrackDescriptor:
    """Search result returned by the connected music service."""

    id: str
    name: str
    artists: List[str] = field(default_factory=list)
    external_link: str = ""
    preview_image: Optional[str] = None


@dataclass(frozen=True)
class PlaylistRef:
    """External reference to a playlist created on the music service."""

    id: str
    external_link: str
    name: Optional[str] = None
    track_count: int = 0


@dataclass(frozen=True)
class Credential:
    """Access credential for the connected music service."""

    access_token: str
    expires_at: Optional[datetime] = None
    refresh_token: Optional[str] = None
    scope: Optional[str] = None

    # Treat a token as expired slightly before the provider does
    EXPIRY_SKEW = timedelta(seconds=60)

    def is_valid(self, now: Optional[datetime] = None) -> bool:
        if not self.access_token:
            return False
        if self.expires_at is None:
            return True
        now = now or datetime.now()
        return now + self.EXPIRY_SKEW < self.expires_at
