import os
import sys

import pytest

ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, os.path.join(ROOT, "src"))

from launchci.context import HostContext  # noqa: E402
from launchci.session import RunSession  # noqa: E402
from launchci.ui.console import Console, set_console  # noqa: E402


@pytest.fixture(autouse=True)
def quiet_console():
    set_console(Console(debug=False))
    yield


@pytest.fixture
def open_session():
    """Open a session over a document dict; closed at teardown."""
    sessions = []

    def _open(doc, gateway=None, **params):
        session = RunSession(HostContext.from_dict(params), gateway=gateway)
        session.open_preset(doc)
        sessions.append(session)
        return session

    yield _open
    for session in sessions:
        session.close()
