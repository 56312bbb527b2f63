from unittest.mock import Mock

import pytest

from weeklytunes.crosscutting.config import ConfigError
from weeklytunes.domain.entities import Credential, Platform, PlaylistRef, TrackDescriptor
from weeklytunes.domain.errors import ServiceError, Unauthorized
from weeklytunes.interfaces.http import HTTPServer


NOW = '2024-01-09T18:30:00'
ALICE = {'X-User-Id': 'uid-alice', 'X-User-Email': 'alice@example.com', 'X-User-Name': 'Alice'}
BOB = {'X-User-Id': 'uid-bob', 'X-User-Email': 'bob@example.com'}


class TestHTTPServer:
    """Tests for the Flask interface."""

    @pytest.fixture(autouse=True)
    def _setup(self, store):
        self.store = store
        self.spotify = Mock()
        self.spotify.platform = Platform.SPOTIFY
        self.spotify.get_valid_credential.return_value = Credential(access_token='token')
        self.server = HTTPServer(store=store, service=self.spotify)
        self.server.app.config['TESTING'] = True
        self.client = self.server.app.test_client()
        yield
        self.server.close()

    def _submit(self, song='Alpha', artist='Beta', headers=ALICE,
                link='https://open.spotify.com/track/abc123', platform='Spotify'):
        return self.client.post('/submissions', headers=headers, json={
            'songName': song, 'artist': artist, 'platform': platform, 'link': link, 'now': NOW,
        })

    def test_health(self):
        response = self.client.get('/health')

        assert response.status_code == 200
        assert response.get_json()['status'] == 'healthy'

    def test_root_lists_endpoints(self):
        data = self.client.get('/').get_json()

        assert data['service'] == 'Weekly Tunes'
        assert data['endpoints']['playlist'] == '/playlist'

    def test_create_submission(self):
        response = self._submit()

        assert response.status_code == 201
        data = response.get_json()
        assert data['songName'] == 'Alpha'
        assert data['user'] == 'Alice'
        assert data['week'] == 'Week of Jan 7, 2024'
        assert data['canModify'] is True
        assert self.store.get('songs', data['id'])['artist'] == 'Beta'

    def test_create_requires_identity(self):
        response = self._submit(headers={})

        assert response.status_code == 401

    def test_create_validation_error(self):
        response = self._submit(artist='')

        assert response.status_code == 400
        assert response.get_json()['field'] == 'artist'
        assert self.store.snapshot('songs') == []

    def test_list_submissions_newest_first_with_ownership(self):
        self._submit('Alpha', 'Beta')
        self.client.post('/submissions', headers=BOB, json={
            'songName': 'Gamma', 'artist': 'Delta', 'now': '2024-01-10T09:00:00',
        })

        data = self.client.get('/submissions', headers=ALICE).get_json()

        assert data['total'] == 2
        assert [s['songName'] for s in data['submissions']] == ['Gamma', 'Alpha']
        assert [s['canModify'] for s in data['submissions']] == [False, True]
        assert data['submissions'][0]['user'] == 'bob@example.com'

    def test_list_submissions_search(self):
        self._submit('Alpha', 'Beta')
        self._submit('Gamma', 'Delta', platform='SoundCloud', link='')

        data = self.client.get('/submissions?q=sound').get_json()

        assert data['total'] == 2
        assert [s['songName'] for s in data['submissions']] == ['Gamma']

    def test_update_own_submission_keeps_week(self):
        doc_id = self._submit().get_json()['id']

        response = self.client.put(f'/submissions/{doc_id}', headers=ALICE, json={
            'songName': 'Alpha (Live)', 'artist': 'Beta', 'now': '2024-01-25T10:00:00',
        })

        assert response.status_code == 200
        stored = self.store.get('songs', doc_id)
        assert stored['songName'] == 'Alpha (Live)'
        assert stored['week'] == 'Week of Jan 7, 2024'
        assert stored['updatedAt'] == '2024-01-25T10:00:00'

    def test_update_others_submission_forbidden(self):
        doc_id = self._submit().get_json()['id']

        response = self.client.put(f'/submissions/{doc_id}', headers=BOB, json={'songName': 'X', 'artist': 'Y'})

        assert response.status_code == 403
        assert self.store.get('songs', doc_id)['songName'] == 'Alpha'

    def test_update_unknown_submission(self):
        response = self.client.put('/submissions/missing', headers=ALICE, json={'songName': 'X', 'artist': 'Y'})

        assert response.status_code == 404

    def test_delete(self):
        doc_id = self._submit().get_json()['id']

        assert self.client.delete(f'/submissions/{doc_id}', headers=BOB).status_code == 403
        assert self.client.delete(f'/submissions/{doc_id}', headers=ALICE).status_code == 204
        assert self.client.get('/submissions').get_json()['total'] == 0

    def test_counts(self):
        self._submit('Alpha', 'Beta')
        self._submit('Gamma', 'Delta')
        self._submit('Epsilon', 'Zeta', headers=BOB)

        data = self.client.get('/feed/counts').get_json()

        assert data == {'counts': {'Alice': 2, 'bob@example.com': 1}, 'total': 3}

    def test_playlist_without_songs_is_not_an_error(self):
        response = self.client.post('/playlist', json={'now': NOW})

        assert response.status_code == 200
        assert response.get_json() == {
            'created': False,
            'reason': 'NoEligibleSubmissions',
            'message': 'No Spotify songs for this week yet!',
            'week': 'Week of Jan 7, 2024',
        }
        self.spotify.create_playlist.assert_not_called()

    def test_playlist_without_track_links(self):
        self._submit(link='https://open.spotify.com/album/xyz')

        data = self.client.post('/playlist', json={'now': NOW}).get_json()

        assert data['created'] is False
        assert data['reason'] == 'NoResolvableTracks'

    def test_playlist_created(self):
        self.spotify.create_playlist.return_value = PlaylistRef(
            id='pl-1', external_link='https://open.spotify.com/playlist/pl-1', track_count=1,
        )
        self._submit()

        response = self.client.post('/playlist', json={'now': NOW})

        assert response.status_code == 201
        assert response.get_json() == {
            'created': True,
            'id': 'pl-1',
            'externalLink': 'https://open.spotify.com/playlist/pl-1',
            'trackCount': 1,
        }

    def test_playlist_rejected_credential_disconnects(self):
        self.spotify.create_playlist.side_effect = Unauthorized('expired')
        self._submit()

        response = self.client.post('/playlist', json={'now': NOW})

        assert response.status_code == 401
        assert response.get_json()['connected'] is False
        assert not self.server.connection.connected

    def test_playlist_service_failure(self):
        self.spotify.create_playlist.side_effect = ServiceError('boom')
        self._submit()

        response = self.client.post('/playlist', json={'now': NOW})

        assert response.status_code == 502
        assert response.get_json()['error'] == 'Error creating playlist. Please try again.'

    def test_spotify_search(self):
        self.spotify.search.return_value = [
            TrackDescriptor(id='abc123', name='Alpha', artists=['Beta'],
                            external_link='https://open.spotify.com/track/abc123',
                            preview_image='https://i.scdn.co/64'),
        ]

        data = self.client.get('/spotify/search?q=alpha').get_json()

        assert data['tracks'] == [{
            'id': 'abc123',
            'name': 'Alpha',
            'artists': ['Beta'],
            'externalLink': 'https://open.spotify.com/track/abc123',
            'previewImage': 'https://i.scdn.co/64',
        }]

    def test_blank_search(self):
        assert self.client.get('/spotify/search?q=').get_json() == {'tracks': []}
        self.spotify.search.assert_not_called()

    def test_search_when_disconnected(self):
        self.client.post('/spotify/disconnect')

        response = self.client.get('/spotify/search?q=alpha')

        assert response.status_code == 401
        self.spotify.revoke_credential.assert_called_once()

    def test_spotify_status(self):
        assert self.client.get('/spotify/status').get_json() == {'connected': True}

        self.spotify.get_valid_credential.return_value = None

        assert self.client.get('/spotify/status').get_json() == {'connected': False}

    def test_auth_url(self):
        self.spotify.begin_authorization.return_value = 'https://accounts.spotify.com/authorize?x=1'

        data = self.client.get('/auth/spotify').get_json()

        assert data == {'auth_url': 'https://accounts.spotify.com/authorize?x=1'}

    def test_auth_without_client_config(self):
        self.spotify.begin_authorization.side_effect = ConfigError('SPOTIFY_CLIENT_ID not found in environment')

        response = self.client.get('/auth/spotify')

        assert response.status_code == 500
        assert response.get_json()['error'] == 'Spotify client not configured'

    def test_callback(self):
        response = self.client.get('/callback?code=the-code')

        assert response.status_code == 200
        assert response.get_json()['connected'] is True
        self.spotify.complete_authorization.assert_called_once_with('the-code')

    @pytest.mark.parametrize("query,message", [
        ('?error=access_denied', 'OAuth authorization failed'),
        ('', 'Missing authorization code'),
    ])
    def test_callback_errors(self, query, message):
        response = self.client.get(f'/callback{query}')

        assert response.status_code == 400
        assert response.get_json()['error'] == message
        self.spotify.complete_authorization.assert_not_called()

    @pytest.mark.parametrize("body,field", [
        ({'songName': 123, 'artist': 'Beta'}, 'songName'),
        ({'songName': 'Alpha', 'artist': ['Beta']}, 'artist'),
        ({'songName': 'Alpha', 'artist': 'Beta', 'link': 42}, 'link'),
        ({'songName': 'Alpha', 'artist': 'Beta', 'now': 'yesterday'}, 'now'),
        ({'songName': 'Alpha', 'artist': 'Beta', 'now': 20240109}, 'now'),
    ])
    def test_create_rejects_malformed_fields(self, body, field):
        response = self.client.post('/submissions', headers=ALICE, json=body)

        assert response.status_code == 400
        assert response.get_json()['field'] == field
        assert self.store.snapshot('songs') == []

    def test_create_rejects_non_object_body(self):
        response = self.client.post('/submissions', headers=ALICE, json=[1, 2])

        assert response.status_code == 400
        assert response.get_json()['field'] == 'body'
        assert self.store.snapshot('songs') == []

    def test_update_rejects_bad_timestamp(self):
        doc_id = self._submit().get_json()['id']

        response = self.client.put(f'/submissions/{doc_id}', headers=ALICE, json={
            'songName': 'Alpha (Live)', 'artist': 'Beta', 'now': '25/01/2024',
        })

        assert response.status_code == 400
        assert self.store.get('songs', doc_id)['songName'] == 'Alpha'

    def test_playlist_rejects_bad_timestamp(self):
        response = self.client.post('/playlist?now=not-a-date')

        assert response.status_code == 400
        assert response.get_json()['field'] == 'now'
        self.spotify.create_playlist.assert_not_called()
