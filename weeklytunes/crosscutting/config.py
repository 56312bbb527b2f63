import os
import json
from datetime import datetime
from typing import Dict, Any, Optional
from pathlib import Path

from dotenv import dotenv_values

from weeklytunes.domain.entities import Credential


class ConfigError(Exception):
    """Configuration error."""
    pass


CLIENT_KEYS = ('SPOTIFY_CLIENT_ID', 'SPOTIFY_CLIENT_SECRET', 'SPOTIFY_REDIRECT_URI')
DEFAULT_REDIRECT_URI = 'http://localhost:3000/callback'


class SecretManager:
    """Manages Spotify client configuration and the stored credential."""

    def __init__(self, config_dir: Optional[str] = None):
        config_dir = config_dir or os.getenv('WEEKLYTUNES_CONFIG_DIR')
        self.config_dir = Path(config_dir) if config_dir else Path.home() / '.weeklytunes'
        self.config_dir.mkdir(parents=True, exist_ok=True)

        self.tokens_file = self.config_dir / 'tokens.json'
        self.env_file = self.config_dir / '.env'

    def get_spotify_scopes(self) -> list:
        """Scopes needed to create playlists on the user's account."""
        return [
            'playlist-modify-public',
            'playlist-modify-private',
        ]

    def get_spotify_scope_string(self) -> str:
        return ' '.join(self.get_spotify_scopes())

    def validate_spotify_scopes(self, scopes: str) -> bool:
        return not self.get_missing_spotify_scopes(scopes)

    def get_missing_spotify_scopes(self, scopes: str) -> list:
        provided = set((scopes or '').replace(',', ' ').split())
        return [s for s in self.get_spotify_scopes() if s not in provided]

    @property
    def data_file(self) -> Path:
        """JSON file backing the local document store."""
        override = os.getenv('WEEKLYTUNES_DATA_FILE')
        return Path(override) if override else self.config_dir / 'songs.json'

    def load_tokens(self) -> Dict[str, Any]:
        if not self.tokens_file.exists():
            return {}

        try:
            with open(self.tokens_file, 'r') as f:
                return json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            raise ConfigError(f"Failed to load tokens from {self.tokens_file}: {e}")

    def save_tokens(self, tokens: Dict[str, Any]) -> None:
        """Merge ``tokens`` into tokens.json."""
        existing_tokens = self.load_tokens()
        existing_tokens.update(tokens)
        try:
            with open(self.tokens_file, 'w') as f:
                json.dump(existing_tokens, f, indent=2, ensure_ascii=False)
        except IOError as e:
            raise ConfigError(f"Failed to save tokens to {self.tokens_file}: {e}")

    def get_spotify_credential(self) -> Optional[Credential]:
        """Stored Spotify credential, expired or not."""
        data = self.load_tokens().get('spotify')
        if not data or not data.get('access_token'):
            return None

        expires_at = data.get('expires_at')
        if isinstance(expires_at, (int, float)):
            expires_at = datetime.fromtimestamp(expires_at)
        elif isinstance(expires_at, str):
            try:
                expires_at = datetime.fromisoformat(expires_at)
            except ValueError:
                expires_at = None

        return Credential(
            access_token=data['access_token'],
            refresh_token=data.get('refresh_token'),
            expires_at=expires_at,
            scope=data.get('scope'),
        )

    def save_spotify_credential(self, credential: Credential) -> None:
        self.save_tokens({
            'spotify': {
                'access_token': credential.access_token,
                'refresh_token': credential.refresh_token,
                'expires_at': credential.expires_at.isoformat() if credential.expires_at else None,
                'scope': credential.scope,
                'updated_at': datetime.now().isoformat(),
            }
        })

    def clear_spotify_credential(self) -> None:
        tokens = self.load_tokens()
        if tokens.pop('spotify', None) is None:
            return
        if tokens:
            with open(self.tokens_file, 'w') as f:
                json.dump(tokens, f, indent=2, ensure_ascii=False)
        else:
            self.tokens_file.unlink()

    def load_env_vars(self) -> Dict[str, str]:
        """Variables from the config dir's .env, overridden by the process environment."""
        env_vars: Dict[str, str] = {}
        if self.env_file.exists():
            env_vars.update({k: v for k, v in dotenv_values(self.env_file).items() if v is not None})
        for key in CLIENT_KEYS:
            if os.getenv(key):
                env_vars[key] = os.environ[key]
        return env_vars

    def save_env_vars(self, env_vars: Dict[str, str]) -> None:
        try:
            with open(self.env_file, 'w') as f:
                for key, value in env_vars.items():
                    f.write(f"{key}={value}\n")
        except IOError as e:
            raise ConfigError(f"Failed to save .env file {self.env_file}: {e}")

    def get_spotify_client_config(self) -> Dict[str, str]:
        """Client id/secret and redirect URI. The redirect URI has a local default."""
        env_vars = self.load_env_vars()

        client_id = env_vars.get('SPOTIFY_CLIENT_ID')
        client_secret = env_vars.get('SPOTIFY_CLIENT_SECRET')

        if not client_id:
            raise ConfigError("SPOTIFY_CLIENT_ID not found in environment")
        if not client_secret:
            raise ConfigError("SPOTIFY_CLIENT_SECRET not found in environment")

        return {
            'client_id': client_id,
            'client_secret': client_secret,
            'redirect_uri': env_vars.get('SPOTIFY_REDIRECT_URI') or DEFAULT_REDIRECT_URI,
        }

    def validate_configuration(self) -> Dict[str, bool]:
        env_vars = self.load_env_vars()
        credential = self.get_spotify_credential()
        return {
            'spotify_client_id': bool(env_vars.get('SPOTIFY_CLIENT_ID')),
            'spotify_client_secret': bool(env_vars.get('SPOTIFY_CLIENT_SECRET')),
            'spotify_redirect_uri': bool(env_vars.get('SPOTIFY_REDIRECT_URI')),
            'spotify_credential': bool(credential and credential.is_valid()),
        }

    def get_config_summary(self) -> Dict[str, Any]:
        """Configuration summary without sensitive data."""
        validation = self.validate_configuration()
        return {
            'config_dir': str(self.config_dir),
            'tokens_file': str(self.tokens_file),
            'env_file': str(self.env_file),
            'data_file': str(self.data_file),
            'validation': validation,
            'spotify_scopes': self.get_spotify_scopes(),
        }


# Global instance, created lazily so importing does not touch the filesystem
secret_manager: Optional[SecretManager] = None


def get_secret_manager() -> SecretManager:
    global secret_manager
    if secret_manager is None:
        secret_manager = SecretManager()
    return secret_manager


def setup_config(config_dir: Optional[str] = None) -> SecretManager:
    """Setup configuration with custom directory."""
    global secret_manager
    secret_manager = SecretManager(config_dir)
    return secret_manager
