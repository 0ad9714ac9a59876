"""Shared fixtures: the users/e-mails records and a clean settings cache."""

import logging

import pytest

from collection_example import EMail, User
from join_config import get_settings
from join_engine import RecordSource


@pytest.fixture(autouse=True)
def clean_settings(monkeypatch):
    for var in ("JOIN_BUILD_SIDE", "JOIN_LOG_LEVEL", "JOIN_LOG_FORMAT", "JOIN_DISPLAY_MAX_WIDTH"):
        monkeypatch.delenv(var, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def users():
    return RecordSource.from_records("Users", [User(1, "Peter"), User(2, "John"), User(3, "Bill")])


@pytest.fixture
def emails():
    return RecordSource.from_records("EMails", [
        EMail(1, "Re: Meeting", "How about 1pm?"),
        EMail(1, "Re: Meeting", "Sorry, I'm not available"),
        EMail(3, "Re: Re: Project proposal", "Give me a few more days..."),
    ])


@pytest.fixture
def restore_root_logger():
    handlers, level = list(logging.root.handlers), logging.root.level
    yield
    logging.root.handlers[:] = handlers
    logging.root.setLevel(level)
