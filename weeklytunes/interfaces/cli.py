import argparse
import logging
import os
import sys
from datetime import datetime
from typing import List, Optional

from dotenv import load_dotenv

from weeklytunes.application.feed import FeedView
from weeklytunes.application.playlist import ServiceConnection
from weeklytunes.application.submissions import SubmissionService
from weeklytunes.crosscutting.config import ConfigError, SecretManager, setup_config
from weeklytunes.crosscutting.logging import setup_logging
from weeklytunes.domain.entities import Identity, Platform, SubmissionFields
from weeklytunes.domain.errors import (
    PermissionDenied,
    PersistenceError,
    PlaylistCreationFailed,
    PlaylistOutcome,
    ServiceError,
    Unauthorized,
    ValidationError,
)
from weeklytunes.domain.submissions import fields_from_track
from weeklytunes.infrastructure.identity import StaticIdentityProvider
from weeklytunes.infrastructure.spotify import SpotifyService
from weeklytunes.infrastructure.store import JsonFileDocumentStore


PLATFORM_CHOICES = [p.value for p in Platform]


class CLI:
    """Command Line Interface for Weekly Tunes."""

    def __init__(self):
        # .env is loaded in main() only, to keep tests deterministic
        self.parser = self._create_parser()
        self.secrets: Optional[SecretManager] = None
        self.store = None
        self.identity_provider: Optional[StaticIdentityProvider] = None
        self.service: Optional[SpotifyService] = None

    def _create_parser(self) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(
            prog='weeklytunes',
            description='Share one song a week with your group and turn the picks into a playlist'
        )
        parser.add_argument('--log-level', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'], default='WARNING',
                            help='Set logging level')
        parser.add_argument('--config-dir', help='Configuration directory (default: ~/.weeklytunes)')
        parser.add_argument('--data-file', help='JSON file holding submissions')
        parser.add_argument('--user-id', default=os.getenv('WEEKLYTUNES_USER_ID'),
                            help='Signed-in user id (env WEEKLYTUNES_USER_ID)')
        parser.add_argument('--email', default=os.getenv('WEEKLYTUNES_USER_EMAIL', ''),
                            help='Signed-in user email (env WEEKLYTUNES_USER_EMAIL)')
        parser.add_argument('--display-name', default=os.getenv('WEEKLYTUNES_USER_NAME'),
                            help='Display name shown in the feed (env WEEKLYTUNES_USER_NAME)')
        parser.add_argument('--now', type=datetime.fromisoformat, default=None,
                            help='Override the current time (ISO format)')

        subparsers = parser.add_subparsers(dest='command', help='Available commands')

        submit_parser = subparsers.add_parser('submit', help='Submit your weekly pick')
        self._add_song_arguments(submit_parser)

        edit_parser = subparsers.add_parser('edit', help='Edit one of your submissions')
        edit_parser.add_argument('id', help='Submission id')
        self._add_song_arguments(edit_parser)

        delete_parser = subparsers.add_parser('delete', help='Delete one of your submissions')
        delete_parser.add_argument('id', help='Submission id')

        feed_parser = subparsers.add_parser('feed', help='Show the weekly picks feed')
        feed_parser.add_argument('--search', default='', help='Filter by song, artist, user or platform')

        subparsers.add_parser('counts', help='Show submissions per user')

        search_parser = subparsers.add_parser('search', help='Search Spotify tracks')
        search_parser.add_argument('query', help='Search query')
        search_parser.add_argument('--submit', type=int, metavar='N',
                                   help='Submit the Nth result (1-based) as your pick')

        subparsers.add_parser('playlist', help="Create a Spotify playlist from this week's songs")

        connect_parser = subparsers.add_parser('connect', help='Connect Spotify')
        connect_parser.add_argument('--code', help='Authorization code from the redirect')

        subparsers.add_parser('disconnect', help='Disconnect Spotify')
        subparsers.add_parser('status', help='Show configuration status')

        serve_parser = subparsers.add_parser('serve', help='Run the HTTP interface')
        serve_parser.add_argument('--host', default='localhost')
        serve_parser.add_argument('--port', type=int, default=3000)
        serve_parser.add_argument('--debug', action='store_true')

        return parser

    @staticmethod
    def _add_song_arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument('--song', required=True, help='Song name')
        parser.add_argument('--artist', required=True, help='Artist')
        parser.add_argument('--platform', choices=PLATFORM_CHOICES, default=Platform.SPOTIFY.value,
                            help='Platform (default: Spotify)')
        parser.add_argument('--link', default='', help='Link to the song')

    def _setup(self, args: argparse.Namespace) -> None:
        setup_logging(args.log_level, structured=False)
        self.secrets = setup_config(args.config_dir)
        self.store = JsonFileDocumentStore(args.data_file or str(self.secrets.data_file))
        self.identity_provider = StaticIdentityProvider()
        if args.user_id:
            self.identity_provider.sign_in(Identity(
                id=args.user_id, email=args.email or '', display_name=args.display_name
            ))
        self.service = SpotifyService(self.secrets)

    def _now(self, args: argparse.Namespace) -> datetime:
        return args.now or datetime.now()

    def _load_feed(self, service: SubmissionService) -> FeedView:
        feed = FeedView()
        subscription = service.watch(feed)
        subscription.unsubscribe()
        return feed

    def _find_submission(self, feed: FeedView, submission_id: str):
        submission = feed.find(submission_id)
        if submission is None:
            raise ValueError(f"Submission '{submission_id}' not found")
        return submission

    @staticmethod
    def _fields(args: argparse.Namespace) -> SubmissionFields:
        return SubmissionFields(song_name=args.song, artist_name=args.artist,
                                platform=Platform.parse(args.platform), link=args.link)

    def _submit(self, args: argparse.Namespace) -> None:
        service = SubmissionService(self.identity_provider, self.store)
        submission = service.submit(self._fields(args), self._now(args))
        print(f"Submitted '{submission.song_name}' by {submission.artist_name} "
              f"({submission.week_label}) [id: {submission.id}]")

    def _edit(self, args: argparse.Namespace) -> None:
        service = SubmissionService(self.identity_provider, self.store)
        feed = self._load_feed(service)
        service.begin_edit(self._find_submission(feed, args.id))
        submission = service.submit(self._fields(args), self._now(args))
        print(f"Updated '{submission.song_name}' by {submission.artist_name} ({submission.week_label})")

    def _delete(self, args: argparse.Namespace) -> None:
        service = SubmissionService(self.identity_provider, self.store)
        feed = self._load_feed(service)
        service.delete(self._find_submission(feed, args.id))
        print(f"Deleted submission {args.id}")

    def _feed(self, args: argparse.Namespace) -> None:
        feed = self._load_feed(SubmissionService(self.identity_provider, self.store))
        feed.set_term(args.search)

        total = feed.total
        print(f"Weekly Picks Feed ({total} {'song' if total == 1 else 'songs'} total)")
        print("-" * 50)
        songs = feed.filtered
        if not songs:
            print(feed.empty_message())
            return
        for song in songs:
            print(f"{song.id}: {song.song_name} by {song.artist_name}")
            print(f"    Submitted by {song.owner_display_name} • {song.platform.value} • {song.week_label}")
            if song.link:
                print(f"    {song.link}")

    def _counts(self, args: argparse.Namespace) -> None:
        feed = self._load_feed(SubmissionService(self.identity_provider, self.store))
        print("Submissions by User")
        print("-" * 50)
        for user, count in feed.counts.items():
            print(f"{user}: {count}")

    def _connection(self) -> ServiceConnection:
        connection = ServiceConnection(self.service)
        connection.refresh()
        return connection

    def _search(self, args: argparse.Namespace) -> None:
        connection = self._connection()
        tracks = connection.search(args.query)
        if not tracks:
            print("No tracks found.")
            return

        if args.submit:
            if not 1 <= args.submit <= len(tracks):
                raise ValueError(f"--submit must be between 1 and {len(tracks)}")
            service = SubmissionService(self.identity_provider, self.store)
            submission = service.submit(fields_from_track(tracks[args.submit - 1]), self._now(args))
            print(f"Submitted '{submission.song_name}' by {submission.artist_name} "
                  f"({submission.week_label}) [id: {submission.id}]")
            return

        for index, track in enumerate(tracks, start=1):
            print(f"{index}. {track.name} - {', '.join(track.artists)}")
            print(f"    {track.external_link}")

    def _playlist(self, args: argparse.Namespace) -> None:
        connection = self._connection()
        feed = self._load_feed(SubmissionService(self.identity_provider, self.store))
        playlist = connection.create_weekly_playlist(feed.records, self._now(args))
        print("Playlist created successfully! Check your Spotify account.")
        print(playlist.external_link)

    def _connect(self, args: argparse.Namespace) -> None:
        connection = ServiceConnection(self.service)
        if args.code:
            connection.complete_authorization(args.code)
            print("Spotify connected.")
            return
        connection.refresh()
        if connection.connected:
            print("Spotify is already connected.")
            return
        print("Open this URL to connect Spotify, then run 'weeklytunes connect --code <code>':")
        print(connection.connect_url())

    def _disconnect(self, args: argparse.Namespace) -> None:
        ServiceConnection(self.service).disconnect()
        print("Spotify disconnected.")

    def _status(self, args: argparse.Namespace) -> None:
        summary = self.secrets.get_config_summary()
        print(f"Config dir: {summary['config_dir']}")
        print(f"Data file:  {summary['data_file']}")
        for key, ok in summary['validation'].items():
            print(f"  {key}: {'ok' if ok else 'missing'}")

    def _serve(self, args: argparse.Namespace) -> None:
        from weeklytunes.interfaces.http import HTTPServer

        HTTPServer(host=args.host, port=args.port, debug=args.debug,
                   store=self.store, service=self.service).run()

    def run(self, argv: Optional[List[str]] = None) -> None:
        """Parse ``argv`` and run the command, exiting non-zero on failure."""
        args = self.parser.parse_args(argv)

        if not args.command:
            self.parser.print_help()
            sys.exit(1)

        logger = logging.getLogger(__name__)
        commands = {
            'submit': self._submit,
            'edit': self._edit,
            'delete': self._delete,
            'feed': self._feed,
            'counts': self._counts,
            'search': self._search,
            'playlist': self._playlist,
            'connect': self._connect,
            'disconnect': self._disconnect,
            'status': self._status,
            'serve': self._serve,
        }

        try:
            self._setup(args)
            commands[args.command](args)
        except PlaylistOutcome as e:
            # Informational: nothing to put in the playlist
            print(str(e))
        except ValidationError as e:
            print(f"Invalid submission: {e}", file=sys.stderr)
            sys.exit(2)
        except Unauthorized as e:
            print(str(e), file=sys.stderr)
            sys.exit(3)
        except PlaylistCreationFailed as e:
            if e.unauthorized:
                print("Spotify rejected the credential. Please connect again.", file=sys.stderr)
            print(str(e), file=sys.stderr)
            sys.exit(1)
        except (PermissionDenied, PersistenceError, ServiceError, ConfigError, ValueError) as e:
            print(str(e), file=sys.stderr)
            sys.exit(1)
        except KeyboardInterrupt:
            logger.warning("Operation cancelled by user")
            sys.exit(130)


def main():
    """Main entry point."""
    load_dotenv()
    cli = CLI()
    cli.run()


if __name__ == '__main__':
    main()
