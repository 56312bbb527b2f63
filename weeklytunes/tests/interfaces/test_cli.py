import json
from unittest.mock import Mock

import pytest

from weeklytunes.domain.entities import Credential, Platform, PlaylistRef, TrackDescriptor
from weeklytunes.domain.errors import Unauthorized
from weeklytunes.interfaces import cli as cli_module
from weeklytunes.interfaces.cli import CLI


NOW = '2024-01-09T18:30:00'


class TestCLI:
    """Tests for the command line interface."""

    @pytest.fixture(autouse=True)
    def _setup(self, tmp_path, monkeypatch, capsys):
        self.data_file = tmp_path / 'songs.json'
        self.capsys = capsys
        self.spotify = Mock()
        self.spotify.platform = Platform.SPOTIFY
        self.spotify.get_valid_credential.return_value = None
        monkeypatch.setattr(cli_module, 'SpotifyService', lambda secrets: self.spotify)

    def run(self, *argv, user='uid-alice', name='Alice'):
        args = ['--data-file', str(self.data_file), '--now', NOW]
        if user:
            args += ['--user-id', user, '--email', f'{user}@example.com']
        if name:
            args += ['--display-name', name]
        try:
            CLI().run(args + list(argv))
            code = 0
        except SystemExit as e:
            code = e.code
        out, err = self.capsys.readouterr()
        return code, out, err

    def _stored(self):
        return json.loads(self.data_file.read_text())['songs']

    def _submit(self, song='Alpha', artist='Beta', **kwargs):
        code, out, _ = self.run('submit', '--song', song, '--artist', artist,
                                '--link', 'https://open.spotify.com/track/abc123', **kwargs)
        assert code == 0
        return out.rsplit('[id: ', 1)[1].rstrip(']\n')

    def test_no_command_prints_help(self):
        code, out, _ = self.run()

        assert code == 1
        assert 'usage: weeklytunes' in out

    def test_submit(self):
        code, out, _ = self.run('submit', '--song', 'Alpha', '--artist', 'Beta')

        assert code == 0
        assert "Submitted 'Alpha' by Beta (Week of Jan 7, 2024)" in out
        (doc,) = self._stored().values()
        assert doc['user'] == 'Alice'
        assert doc['userId'] == 'uid-alice'
        assert doc['platform'] == 'Spotify'

    def test_submit_requires_user(self):
        code, _, err = self.run('submit', '--song', 'Alpha', '--artist', 'Beta', user=None)

        assert code == 3
        assert 'Sign in' in err

    def test_submit_blank_artist_is_rejected(self):
        code, _, err = self.run('submit', '--song', 'Alpha', '--artist', '   ')

        assert code == 2
        assert 'Invalid submission' in err
        assert not self.data_file.exists() or self._stored() == {}

    def test_feed_and_search(self):
        self._submit('Alpha', 'Beta')
        self._submit('Gamma', 'Delta', user='uid-bob', name='Bob')

        code, out, _ = self.run('feed')
        assert code == 0
        assert 'Weekly Picks Feed (2 songs total)' in out
        assert out.index('Gamma by Delta') < out.index('Alpha by Beta')

        code, out, _ = self.run('feed', '--search', 'bob')
        assert 'Gamma by Delta' in out
        assert 'Alpha by Beta' not in out

        code, out, _ = self.run('feed', '--search', 'zzz')
        assert 'No songs match your search.' in out

    def test_empty_feed(self):
        code, out, _ = self.run('feed')

        assert code == 0
        assert 'No songs submitted yet. Be the first!' in out

    def test_counts(self):
        self._submit('Alpha', 'Beta')
        self._submit('Gamma', 'Delta')

        code, out, _ = self.run('counts')

        assert code == 0
        assert 'Alice: 2' in out

    def test_edit_own_submission(self):
        doc_id = self._submit('Alpha', 'Beta')

        code, out, _ = self.run('edit', doc_id, '--song', 'Alpha (Live)', '--artist', 'Beta')

        assert code == 0
        assert "Updated 'Alpha (Live)'" in out
        assert self._stored()[doc_id]['songName'] == 'Alpha (Live)'

    def test_edit_or_delete_others_submission_is_denied(self):
        doc_id = self._submit('Alpha', 'Beta')

        code, _, _ = self.run('edit', doc_id, '--song', 'X', '--artist', 'Y', user='uid-bob', name='Bob')
        assert code == 1
        code, _, _ = self.run('delete', doc_id, user='uid-bob', name='Bob')
        assert code == 1

        assert doc_id in self._stored()

    def test_delete(self):
        doc_id = self._submit('Alpha', 'Beta')

        code, out, _ = self.run('delete', doc_id)

        assert code == 0
        assert self._stored() == {}

    def test_delete_unknown_id(self):
        code, _, err = self.run('delete', 'missing')

        assert code == 1
        assert 'not found' in err

    def test_playlist_requires_connection(self):
        self._submit('Alpha', 'Beta')

        code, _, err = self.run('playlist')

        assert code == 3
        assert 'Please connect to Spotify first!' in err

    def test_playlist_with_no_songs_is_informational(self):
        self.spotify.get_valid_credential.return_value = Credential(access_token='token')

        code, out, _ = self.run('playlist')

        assert code == 0
        assert 'No Spotify songs for this week yet!' in out
        self.spotify.create_playlist.assert_not_called()

    def test_playlist_created(self):
        self.spotify.get_valid_credential.return_value = Credential(access_token='token')
        self.spotify.create_playlist.return_value = PlaylistRef(
            id='pl-1', external_link='https://open.spotify.com/playlist/pl-1', track_count=1,
        )
        self._submit('Alpha', 'Beta')

        code, out, _ = self.run('playlist')

        assert code == 0
        assert 'Playlist created successfully!' in out
        assert 'https://open.spotify.com/playlist/pl-1' in out
        name, _, track_ids = self.spotify.create_playlist.call_args.args
        assert name == 'Weekly Tunes - Week of Jan 7, 2024'
        assert track_ids == ['abc123']

    def test_playlist_rejected_credential(self):
        self.spotify.get_valid_credential.return_value = Credential(access_token='token')
        self.spotify.create_playlist.side_effect = Unauthorized('expired')
        self._submit('Alpha', 'Beta')

        code, _, err = self.run('playlist')

        assert code == 1
        assert 'connect again' in err

    def test_search_lists_tracks(self):
        self.spotify.get_valid_credential.return_value = Credential(access_token='token')
        self.spotify.search.return_value = [
            TrackDescriptor(id='abc123', name='Alpha', artists=['Beta', 'Gamma'],
                            external_link='https://open.spotify.com/track/abc123'),
        ]

        code, out, _ = self.run('search', 'alpha')

        assert code == 0
        assert '1. Alpha - Beta, Gamma' in out
        self.spotify.search.assert_called_once_with('alpha')

    def test_search_and_submit_result(self):
        self.spotify.get_valid_credential.return_value = Credential(access_token='token')
        self.spotify.search.return_value = [
            TrackDescriptor(id='abc123', name='Alpha', artists=['Beta', 'Gamma'],
                            external_link='https://open.spotify.com/track/abc123'),
        ]

        code, out, _ = self.run('search', 'alpha', '--submit', '1')

        assert code == 0
        (doc,) = self._stored().values()
        assert doc['artist'] == 'Beta, Gamma'
        assert doc['link'] == 'https://open.spotify.com/track/abc123'

    def test_search_submit_out_of_range(self):
        self.spotify.get_valid_credential.return_value = Credential(access_token='token')
        self.spotify.search.return_value = [TrackDescriptor(id='abc123', name='Alpha')]

        code, _, err = self.run('search', 'alpha', '--submit', '5')

        assert code == 1
        assert 'between 1 and 1' in err

    def test_connect_prints_authorization_url(self):
        self.spotify.begin_authorization.return_value = 'https://accounts.spotify.com/authorize?x=1'

        code, out, _ = self.run('connect')

        assert code == 0
        assert 'https://accounts.spotify.com/authorize?x=1' in out

    def test_connect_with_code(self):
        code, out, _ = self.run('connect', '--code', 'the-code')

        assert code == 0
        assert 'Spotify connected.' in out
        self.spotify.complete_authorization.assert_called_once_with('the-code')

    def test_disconnect(self):
        code, out, _ = self.run('disconnect')

        assert code == 0
        self.spotify.revoke_credential.assert_called_once()

    def test_status(self):
        code, out, _ = self.run('status')

        assert code == 0
        assert "Config dir:" in out
        assert 'spotify_client_id: missing' in out
