import logging
import os
import sys
from datetime import datetime

import pytest


def _ensure_project_root_on_sys_path() -> None:
    here = os.path.dirname(__file__)
    project_root = os.path.abspath(os.path.join(here, "..", ".."))
    if project_root not in sys.path:
        sys.path.insert(0, project_root)


_ensure_project_root_on_sys_path()

from weeklytunes.domain.entities import Identity  # noqa: E402
from weeklytunes.infrastructure.identity import StaticIdentityProvider  # noqa: E402
from weeklytunes.infrastructure.store import InMemoryDocumentStore  # noqa: E402


@pytest.fixture(autouse=True)
def _isolate_environment(tmp_path, monkeypatch):
    """Keep real Spotify configuration and user files out of tests.

    A developer .env may set these variables; every test starts without them
    and with a throwaway config directory.
    """
    for key in ['SPOTIFY_CLIENT_ID', 'SPOTIFY_CLIENT_SECRET', 'SPOTIFY_REDIRECT_URI',
                'WEEKLYTUNES_DATA_FILE', 'WEEKLYTUNES_USER_ID', 'WEEKLYTUNES_USER_EMAIL',
                'WEEKLYTUNES_USER_NAME']:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv('WEEKLYTUNES_CONFIG_DIR', str(tmp_path / 'config'))
    yield
    # CLI runs attach handlers bound to the captured stderr of that test
    logger = logging.getLogger('weeklytunes')
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def alice():
    return Identity(id='uid-alice', email='alice@example.com', display_name='Alice')


@pytest.fixture
def bob():
    return Identity(id='uid-bob', email='bob@example.com')


@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def identity_provider(alice):
    return StaticIdentityProvider(alice)


@pytest.fixture
def tuesday():
    # Week starting Sunday 2024-01-07
    return datetime(2024, 1, 9, 18, 30)
