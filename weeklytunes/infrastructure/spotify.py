import logging
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import requests
import spotipy
from spotipy.cache_handler import MemoryCacheHandler
from spotipy.oauth2 import SpotifyOAuth, SpotifyOauthError

from weeklytunes.crosscutting.config import ConfigError, SecretManager
from weeklytunes.domain.entities import Credential, Platform, PlaylistRef, TrackDescriptor
from weeklytunes.domain.errors import ServiceError, Unauthorized

logger = logging.getLogger(__name__)


# Spotify accepts at most 100 items per add-items request
ADD_ITEMS_BATCH = 100


class SpotifyService:
    """Spotify implementation of the music service port."""

    platform = Platform.SPOTIFY

    def __init__(self,
                 secrets: SecretManager,
                 search_limit: int = 10,
                 client_factory: Optional[Callable[[str], Any]] = None,
                 oauth_factory: Optional[Callable[[], SpotifyOAuth]] = None):
        """Initialize the service.

        Args:
            secrets: Where client configuration and the credential live
            search_limit: Number of tracks returned by search
            client_factory: Builds an API client from an access token
            oauth_factory: Builds the OAuth manager used for authorization and refresh
        """
        self.secrets = secrets
        self.search_limit = search_limit
        self._client_factory = client_factory or (
            lambda token: spotipy.Spotify(auth=token, requests_timeout=15)
        )
        self._oauth_factory = oauth_factory or self._default_oauth

        # Token refresh tracking
        self._last_refresh_attempt = 0.0
        self._refresh_cooldown = 5  # seconds between refresh attempts

    def _default_oauth(self) -> SpotifyOAuth:
        config = self.secrets.get_spotify_client_config()
        return SpotifyOAuth(
            client_id=config['client_id'],
            client_secret=config['client_secret'],
            redirect_uri=config['redirect_uri'],
            scope=self.secrets.get_spotify_scope_string(),
            cache_handler=MemoryCacheHandler(),
            open_browser=False,
        )

    @staticmethod
    def _credential_from_token_info(token_info: Dict[str, Any],
                                    previous: Optional[Credential] = None) -> Credential:
        expires_at = token_info.get('expires_at')
        if expires_at is None and token_info.get('expires_in'):
            expires_at = time.time() + int(token_info['expires_in'])
        return Credential(
            access_token=token_info['access_token'],
            refresh_token=token_info.get('refresh_token') or (previous.refresh_token if previous else None),
            expires_at=datetime.fromtimestamp(expires_at) if expires_at else None,
            scope=token_info.get('scope'),
        )

    def _refresh(self, credential: Credential) -> Optional[Credential]:
        """Refresh an expired credential.

        Returns:
            The new credential, or None when refresh is impossible or failed
        """
        if not credential.refresh_token:
            return None

        current_time = time.time()
        if current_time - self._last_refresh_attempt < self._refresh_cooldown:
            return None
        self._last_refresh_attempt = current_time

        try:
            logger.info("Refreshing Spotify access token...")
            token_info = self._oauth_factory().refresh_access_token(credential.refresh_token)
        except ConfigError as e:
            logger.warning(f"Cannot refresh token: {e}")
            return None
        except (SpotifyOauthError, requests.exceptions.RequestException) as e:
            logger.error(f"Failed to refresh Spotify token: {e}")
            return None

        if not token_info or 'access_token' not in token_info:
            logger.error("Failed to refresh token: invalid response")
            return None

        refreshed = self._credential_from_token_info(token_info, previous=credential)
        self.secrets.save_spotify_credential(refreshed)
        logger.info("Spotify access token refreshed successfully")
        return refreshed

    def get_valid_credential(self) -> Optional[Credential]:
        credential = self.secrets.get_spotify_credential()
        if credential is None:
            return None
        if credential.is_valid():
            return credential
        logger.info("Stored Spotify credential expired")
        return self._refresh(credential)

    def begin_authorization(self) -> str:
        return self._oauth_factory().get_authorize_url()

    def complete_authorization(self, code: str) -> Credential:
        try:
            token_info = self._oauth_factory().get_access_token(code, as_dict=True, check_cache=False)
        except SpotifyOauthError as e:
            raise Unauthorized(f"Spotify authorization failed: {e}") from e
        except requests.exceptions.RequestException as e:
            raise ServiceError(f"Spotify token exchange failed: {e}") from e

        credential = self._credential_from_token_info(token_info)
        if not self.secrets.validate_spotify_scopes(credential.scope or ''):
            missing = self.secrets.get_missing_spotify_scopes(credential.scope or '')
            logger.warning(f"Spotify credential is missing scopes: {' '.join(missing)}")
        self.secrets.save_spotify_credential(credential)
        logger.info("Spotify credential saved")
        return credential

    def revoke_credential(self) -> None:
        self.secrets.clear_spotify_credential()
        logger.info("Spotify credential removed")

    def _client(self):
        credential = self.get_valid_credential()
        if credential is None:
            raise Unauthorized("Spotify is not connected")
        return self._client_factory(credential.access_token)

    @staticmethod
    def _translate_error(error: Exception, operation: str) -> Exception:
        status = getattr(error, 'http_status', None)
        if status == 401:
            return Unauthorized(f"Spotify rejected the credential during {operation}")
        return ServiceError(f"Spotify {operation} failed: {error}")

    @staticmethod
    def _spotify_track_to_descriptor(item: Dict[str, Any]) -> Optional[TrackDescriptor]:
        track_id = item.get('id')
        if not track_id:
            return None
        images = (item.get('album') or {}).get('images') or []
        # Spotify lists album images largest first; the feed shows the smallest
        preview = images[-1].get('url') if images else None
        return TrackDescriptor(
            id=track_id,
            name=item.get('name', ''),
            artists=[a.get('name', '') for a in item.get('artists', []) if a.get('name')],
            external_link=(item.get('external_urls') or {}).get('spotify', ''),
            preview_image=preview,
        )

    def search(self, query: str) -> List[TrackDescriptor]:
        """Search Spotify tracks.

        Args:
            query: Free-text query

        Returns:
            Matching tracks, in Spotify's relevance order
        """
        client = self._client()
        try:
            results = client.search(q=query, type='track', limit=self.search_limit)
        except (spotipy.SpotifyException, requests.exceptions.RequestException) as e:
            logger.error(f"Spotify search for '{query}' failed: {e}")
            raise self._translate_error(e, 'search') from e

        items = ((results or {}).get('tracks') or {}).get('items') or []
        tracks = [t for t in (self._spotify_track_to_descriptor(i) for i in items) if t]
        logger.debug(f"Spotify search '{query}' returned {len(tracks)} tracks")
        return tracks

    def create_playlist(self, name: str, description: str, track_ids: List[str]) -> PlaylistRef:
        """Create a private playlist for the current user.

        Args:
            name: Playlist name
            description: Playlist description
            track_ids: Spotify track ids, in playlist order

        Returns:
            Reference to the created playlist
        """
        client = self._client()
        uris = [f"spotify:track:{track_id}" for track_id in track_ids]
        try:
            user_id = client.current_user()['id']
            result = client.user_playlist_create(user_id, name, public=False, description=description)
            for i in range(0, len(uris), ADD_ITEMS_BATCH):
                client.playlist_add_items(result['id'], uris[i:i + ADD_ITEMS_BATCH])
        except (spotipy.SpotifyException, requests.exceptions.RequestException) as e:
            logger.error(f"Failed to create playlist '{name}': {e}")
            raise self._translate_error(e, 'playlist creation') from e

        logger.info(f"Created Spotify playlist {result['id']} with {len(uris)} tracks")
        return PlaylistRef(
            id=result['id'],
            external_link=(result.get('external_urls') or {}).get('spotify', ''),
            name=result.get('name', name),
            track_count=len(uris),
        )
