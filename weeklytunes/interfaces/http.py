import os
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from flask import Flask, request, jsonify

from weeklytunes.application.feed import FeedView, search
from weeklytunes.application.playlist import ServiceConnection
from weeklytunes.application.submissions import SubmissionService
from weeklytunes.crosscutting.config import ConfigError, get_secret_manager
from weeklytunes.domain.entities import Identity, Submission
from weeklytunes.domain.errors import (
    PermissionDenied,
    PersistenceError,
    PlaylistCreationFailed,
    PlaylistOutcome,
    ServiceError,
    Unauthorized,
    ValidationError,
)
from weeklytunes.domain.submissions import can_modify
from weeklytunes.infrastructure.identity import StaticIdentityProvider
from weeklytunes.infrastructure.spotify import SpotifyService
from weeklytunes.infrastructure.store import JsonFileDocumentStore


class HTTPServer:
    """HTTP interface for Weekly Tunes.

    Identity comes from ``X-User-Id``/``X-User-Email``/``X-User-Name`` headers
    set by the authenticating proxy in front of the app.
    """

    def __init__(self, host: str = 'localhost', port: int = 3000, debug: bool = False,
                 store=None, service=None):
        self.host = host
        self.port = port
        self.debug = debug
        self.app = Flask(__name__)
        self.logger = logging.getLogger(__name__)

        self.version = "0.1.0"
        self.commit = os.getenv('GIT_COMMIT', 'unknown')

        if store is None:
            store = JsonFileDocumentStore(str(get_secret_manager().data_file))
        if service is None:
            service = SpotifyService(get_secret_manager())
        self.store = store
        self.connection = ServiceConnection(service)
        self.connection.refresh()

        # Live view of the songs collection for the lifetime of the server
        self.feed = FeedView()
        self._server_identity = StaticIdentityProvider(Identity(id='server'))
        self._feed_subscription = SubmissionService(self._server_identity, self.store).watch(self.feed)

        self._setup_routes()
        self._setup_error_handlers()

    def _identity(self) -> Optional[Identity]:
        user_id = request.headers.get('X-User-Id')
        if not user_id:
            return None
        return Identity(
            id=user_id,
            email=request.headers.get('X-User-Email', ''),
            display_name=request.headers.get('X-User-Name') or None,
        )

    def _submission_service(self) -> SubmissionService:
        identity = self._identity()
        if identity is None:
            raise Unauthorized("Missing X-User-Id header")
        return SubmissionService(StaticIdentityProvider(identity), self.store)

    def _serialize(self, submission: Submission) -> Dict[str, Any]:
        data = {'id': submission.id, **submission.to_document()}
        data['canModify'] = can_modify(submission, self._identity())
        return data

    def _find(self, submission_id: str) -> Submission:
        submission = self.feed.find(submission_id)
        if submission is None:
            raise LookupError(f"Submission {submission_id} not found")
        return submission

    @staticmethod
    def _now() -> datetime:
        body = request.get_json(silent=True)
        value = (body.get('now') if isinstance(body, dict) else None) or request.args.get('now')
        if not value:
            return datetime.now()
        if not isinstance(value, str):
            raise ValidationError('now', 'Expected an ISO 8601 timestamp')
        try:
            return datetime.fromisoformat(value)
        except ValueError as e:
            raise ValidationError('now', f"Invalid timestamp: {value}") from e

    def _setup_error_handlers(self) -> None:

        def error(status: int, message: str, **extra):
            return jsonify({'error': message, **extra}), status

        @self.app.errorhandler(ValidationError)
        def validation_error(e):
            return error(400, str(e), field=e.field)

        @self.app.errorhandler(Unauthorized)
        def unauthorized(e):
            return error(401, str(e), connected=self.connection.connected)

        @self.app.errorhandler(PermissionDenied)
        def permission_denied(e):
            return error(403, str(e))

        @self.app.errorhandler(LookupError)
        def not_found(e):
            return error(404, str(e))

        @self.app.errorhandler(PersistenceError)
        def persistence_error(e):
            self.logger.error(f"Store failure: {e}")
            return error(503, str(e))

        @self.app.errorhandler(PlaylistCreationFailed)
        def playlist_failed(e):
            return error(401 if e.unauthorized else 502, str(e), connected=self.connection.connected)

        @self.app.errorhandler(ServiceError)
        def service_error(e):
            return error(502, str(e))

        @self.app.errorhandler(ConfigError)
        def config_error(e):
            self.logger.error(f"Configuration error: {e}")
            return error(500, 'Spotify client not configured', details=str(e))

    def _setup_routes(self) -> None:

        @self.app.route('/health', methods=['GET'])
        def health_check():
            return jsonify({
                'status': 'healthy',
                'version': self.version,
                'commit': self.commit,
                'timestamp': datetime.now().isoformat()
            }), 200

        @self.app.route('/', methods=['GET'])
        def root():
            return jsonify({
                'service': 'Weekly Tunes',
                'version': self.version,
                'endpoints': {
                    'health': '/health',
                    'spotify_auth': '/auth/spotify',
                    'oauth_callback': '/callback',
                    'spotify_search': '/spotify/search',
                    'submissions': '/submissions',
                    'counts': '/feed/counts',
                    'playlist': '/playlist',
                }
            }), 200

        @self.app.route('/auth/spotify', methods=['GET'])
        def spotify_auth():
            auth_url = self.connection.connect_url()
            return jsonify({'auth_url': auth_url}), 200

        @self.app.route('/callback', methods=['GET'])
        def oauth_callback():
            code = request.args.get('code')
            oauth_error = request.args.get('error')

            if oauth_error:
                self.logger.error(f"OAuth error: {oauth_error}")
                return jsonify({'error': 'OAuth authorization failed', 'details': oauth_error}), 400
            if not code:
                return jsonify({'error': 'Missing authorization code'}), 400

            self.connection.complete_authorization(code)
            self.logger.info("Spotify connected")
            return jsonify({
                'status': 'success',
                'connected': self.connection.connected,
                'timestamp': datetime.now().isoformat()
            }), 200

        @self.app.route('/spotify/status', methods=['GET'])
        def spotify_status():
            self.connection.refresh()
            return jsonify({'connected': self.connection.connected}), 200

        @self.app.route('/spotify/disconnect', methods=['POST'])
        def spotify_disconnect():
            self.connection.disconnect()
            return jsonify({'connected': False}), 200

        @self.app.route('/spotify/search', methods=['GET'])
        def spotify_search():
            tracks = self.connection.search(request.args.get('q', ''))
            return jsonify({'tracks': [{
                'id': t.id,
                'name': t.name,
                'artists': t.artists,
                'externalLink': t.external_link,
                'previewImage': t.preview_image,
            } for t in tracks]}), 200

        @self.app.route('/submissions', methods=['GET'])
        def list_submissions():
            term = request.args.get('q', '')
            songs = search(self.feed.records, term)
            return jsonify({
                'total': self.feed.total,
                'submissions': [self._serialize(s) for s in songs],
            }), 200

        @self.app.route('/submissions', methods=['POST'])
        def create_submission():
            service = self._submission_service()
            submission = service.submit(request.get_json(silent=True) or {}, self._now())
            return jsonify(self._serialize(submission)), 201

        @self.app.route('/submissions/<submission_id>', methods=['PUT'])
        def update_submission(submission_id):
            service = self._submission_service()
            service.begin_edit(self._find(submission_id))
            submission = service.submit(request.get_json(silent=True) or {}, self._now())
            return jsonify(self._serialize(submission)), 200

        @self.app.route('/submissions/<submission_id>', methods=['DELETE'])
        def delete_submission(submission_id):
            service = self._submission_service()
            service.delete(self._find(submission_id))
            return '', 204

        @self.app.route('/feed/counts', methods=['GET'])
        def feed_counts():
            return jsonify({'counts': self.feed.counts, 'total': self.feed.total}), 200

        @self.app.route('/playlist', methods=['POST'])
        def create_playlist():
            try:
                playlist = self.connection.create_weekly_playlist(self.feed.records, self._now())
            except PlaylistOutcome as e:
                return jsonify({
                    'created': False,
                    'reason': type(e).__name__,
                    'message': str(e),
                    'week': e.week_label,
                }), 200
            return jsonify({
                'created': True,
                'id': playlist.id,
                'externalLink': playlist.external_link,
                'trackCount': playlist.track_count,
            }), 201

    def close(self) -> None:
        """Release the live subscription on the songs collection."""
        self._feed_subscription.unsubscribe()

    def run(self) -> None:
        self.logger.info(f"Starting Weekly Tunes HTTP server on {self.host}:{self.port}")
        try:
            # The shared FeedView is not thread-safe; serve one request at a time
            self.app.run(host=self.host, port=self.port, debug=self.debug, threaded=False)
        finally:
            self.close()


def create_app() -> Flask:
    """Create Flask app for WSGI servers."""
    server = HTTPServer()
    return server.app
