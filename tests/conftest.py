"""Shared fixtures for lettertrack tests."""

import os
from unittest.mock import AsyncMock

import pytest

from lettertrack.integrations.letters_api import LettersClient
from lettertrack.notifications import Notifier


@pytest.fixture(autouse=True)
def _no_sops(monkeypatch):
    """Ensure tests never try to invoke SOPS."""
    monkeypatch.setenv("LETTERTRACK_USE_SOPS", "false")


@pytest.fixture()
def project_root():
    """Return the project root path."""
    return os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


@pytest.fixture()
def letters_client():
    """A LettersClient stand-in: async methods are AsyncMocks, sync ones MagicMocks."""
    return AsyncMock(spec=LettersClient)


@pytest.fixture()
def notifier():
    return Notifier()
