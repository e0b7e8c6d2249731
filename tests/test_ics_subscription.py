"""Tests for downloading the ICS feed."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
import requests

from calsync.ics_subscription import ICSSubscription, SourceFetchError, normalize_feed_url

pytestmark = pytest.mark.unit


def _session(text: str = "", status_error: Exception | None = None, get_error: Exception | None = None):
    response = MagicMock()
    response.text = text
    if status_error is not None:
        response.raise_for_status.side_effect = status_error
    session = MagicMock(spec=requests.Session)
    if get_error is not None:
        session.get.side_effect = get_error
    else:
        session.get.return_value = response
    return session


@pytest.mark.parametrize("url, expected", [
    ("webcal://example.com/feed.ics", "https://example.com/feed.ics"),
    ("WEBCAL://example.com/feed.ics", "https://example.com/feed.ics"),
    ("  https://example.com/feed.ics ", "https://example.com/feed.ics"),
    ("http://example.com/feed.ics", "http://example.com/feed.ics"),
])
def test_normalize_feed_url(url, expected):
    assert normalize_feed_url(url) == expected


def test_empty_url_is_rejected():
    with pytest.raises(ValueError):
        ICSSubscription("  ")


def test_fetch_text(sample_ics):
    session = _session(sample_ics)
    subscription = ICSSubscription("webcal://example.com/feed.ics", session=session)

    assert subscription.fetch_text() == sample_ics
    assert subscription.last_fetch is not None
    assert subscription.error is None

    args, kwargs = session.get.call_args
    assert args == ("https://example.com/feed.ics",)
    assert kwargs["timeout"] == 30
    assert kwargs["auth"] is None
    assert kwargs["headers"]["Accept"] == "text/calendar"


def test_basic_auth_is_sent(sample_ics):
    session = _session(sample_ics)
    ICSSubscription("https://example.com/feed.ics", username="u", password="p", timeout=5,
                    session=session).fetch_text()

    kwargs = session.get.call_args.kwargs
    assert kwargs["auth"] == ("u", "p")
    assert kwargs["timeout"] == 5


def test_network_error():
    subscription = ICSSubscription(
        "https://example.com/feed.ics",
        session=_session(get_error=requests.ConnectionError("unreachable")),
    )
    with pytest.raises(SourceFetchError, match="unreachable"):
        subscription.fetch_text()
    assert subscription.error.startswith("Network error")


def test_http_error():
    subscription = ICSSubscription(
        "https://example.com/feed.ics",
        session=_session(status_error=requests.HTTPError("404 Client Error")),
    )
    with pytest.raises(SourceFetchError, match="404"):
        subscription.fetch_text()


def test_body_that_is_not_a_calendar():
    subscription = ICSSubscription(
        "https://example.com/feed.ics",
        session=_session("<html><body>Login required</body></html>"),
    )
    with pytest.raises(SourceFetchError, match="did not return an iCalendar"):
        subscription.fetch_text()
    assert subscription.last_fetch is None
