from typing import Optional


class WeeklyTunesError(Exception):
    """Base class for every error the application surfaces to the user."""


class ValidationError(WeeklyTunesError):
    """A required submission field is missing or invalid. Nothing was persisted."""

    def __init__(self, field: str, message: Optional[str] = None) -> None:
        super().__init__(message or f"{field} is required")
        self.field = field


class PermissionDenied(WeeklyTunesError):
    """The current user does not own the submission they tried to change."""


class PersistenceError(WeeklyTunesError):
    """The document store rejected or failed a call. Retrying may succeed."""


class Unauthorized(WeeklyTunesError):
    """The music service rejected the credential, or no credential is available."""


class ServiceError(WeeklyTunesError):
    """Transport or provider failure from the music service."""


class PlaylistOutcome(WeeklyTunesError):
    """Informational outcome of playlist assembly, not a system failure."""

    def __init__(self, week_label: str, message: str) -> None:
        super().__init__(message)
        self.week_label = week_label


class NoEligibleSubmissions(PlaylistOutcome):
    """No submission of this week targets the connected service with a link."""

    def __init__(self, week_label: str, platform: str = "Spotify") -> None:
        super().__init__(week_label, f"No {platform} songs for this week yet!")
        self.platform = platform


class NoResolvableTracks(PlaylistOutcome):
    """Eligible submissions exist but none of their links yield a track id."""

    def __init__(self, week_label: str, skipped: int = 0) -> None:
        super().__init__(week_label, f"None of the {skipped} links for {week_label} point at a track")
        self.skipped = skipped


class PlaylistCreationFailed(WeeklyTunesError):
    """The music service failed to create the playlist."""

    def __init__(self, message: str = "Error creating playlist. Please try again.",
                 unauthorized: bool = False) -> None:
        super().__init__(message)
        self.unauthorized = unauthorized
