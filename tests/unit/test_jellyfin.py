from datetime import datetime, timezone

import pytest
import requests

from app.core.errors import (
    NotificationCancelledError,
    NotificationDisposedError,
    NotificationError,
    NotificationStateError,
    SessionSourceError,
)
from app.core.event_bus import EventBus, LifecycleEventType
from app.core.policy.classifier import TranscodeReason
from app.integrations.jellyfin import JellyfinClient, SessionPoller, session_from_payload
from conftest import make_session


class DummyResp:
    def __init__(self, data=None, status=200):
        self._data = data
        self.status_code = status

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError("boom")

    def json(self):
        if isinstance(self._data, Exception):
            raise self._data
        return self._data


class DummyHttp:
    def __init__(self, response=None, error=None):
        self.headers = {}
        self.response = response
        self.error = error
        self.calls = []

    def _respond(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        if self.error is not None:
            raise self.error
        return self.response

    def get(self, url, **kwargs):
        return self._respond("GET", url, **kwargs)

    def post(self, url, **kwargs):
        return self._respond("POST", url, **kwargs)


PAYLOAD = {
    "Id": "sess-1",
    "UserId": "5f0e0d3c-1b2a-4c5d-9e8f-0a1b2c3d4e5f",
    "UserName": "alice",
    "Client": "Jellyfin Web",
    "NowPlayingItem": {"Id": "item-1", "Name": "Big Buck Bunny"},
    "TranscodingInfo": {
        "IsVideoDirect": False,
        "TranscodeReasons": ["VideoCodecNotSupported", "AudioCodecNotSupported"],
    },
    "PlayState": {"IsPaused": True},
    "LastActivityDate": "2024-03-01T12:00:00.1234567Z",
}


def test_session_from_payload_maps_fields():
    session = session_from_payload(PAYLOAD)

    assert session.session_id == "sess-1"
    assert session.user_id == PAYLOAD["UserId"]
    assert session.client == "Jellyfin Web"
    assert session.item_id == "item-1"
    assert session.now_playing.name == "Big Buck Bunny"
    assert session.transcoding.reasons == (
        TranscodeReason.VideoCodecNotSupported | TranscodeReason.AudioCodecNotSupported
    )
    assert session.is_transcoding is True
    assert session.is_paused is True
    assert session.last_activity == datetime(2024, 3, 1, 12, 0, 0, 123456, tzinfo=timezone.utc)


def test_session_from_payload_handles_idle_session():
    session = session_from_payload(
        {"Id": "sess-2", "UserId": "00000000-0000-0000-0000-000000000000", "LastActivityDate": "soon"}
    )

    assert session.user_id is None
    assert session.now_playing is None
    assert session.transcoding is None
    assert session.is_transcoding is False
    assert session.last_activity is None


def test_client_sets_token_header_and_lists_sessions():
    http = DummyHttp(DummyResp([PAYLOAD, {"NoId": True}, "junk"]))
    client = JellyfinClient("http://jf.local/", "secret", session=http)

    sessions = client.list_sessions()

    assert http.headers["X-Emby-Token"] == "secret"
    assert [s.session_id for s in sessions] == ["sess-1"]
    assert http.calls[0][1] == "http://jf.local/Sessions"
    assert client.get_session("sess-1").user_name == "alice"
    assert client.get_session("missing") is None


@pytest.mark.parametrize(
    "http",
    [
        DummyHttp(error=requests.ConnectionError("refused")),
        DummyHttp(DummyResp(status=500)),
        DummyHttp(DummyResp(ValueError("not json"))),
        DummyHttp(DummyResp({"not": "a list"})),
    ],
)
def test_list_sessions_failures_raise_source_error(http):
    client = JellyfinClient("http://jf.local", "secret", session=http)
    with pytest.raises(SessionSourceError):
        client.list_sessions()


def test_send_message_posts_body():
    http = DummyHttp(DummyResp(status=204))
    client = JellyfinClient("http://jf.local", "secret", session=http)

    client.send_message("sess-1", "Header", "Text", 5000)

    method, url, kwargs = http.calls[0]
    assert method == "POST"
    assert url == "http://jf.local/Sessions/sess-1/Message"
    assert kwargs["json"] == {"Header": "Header", "Text": "Text", "TimeoutMs": 5000}


@pytest.mark.parametrize(
    "http, expected",
    [
        (DummyHttp(DummyResp(status=404)), NotificationDisposedError),
        (DummyHttp(DummyResp(status=409)), NotificationStateError),
        (DummyHttp(error=requests.Timeout("slow")), NotificationCancelledError),
        (DummyHttp(error=requests.ConnectionError("refused")), NotificationError),
    ],
)
def test_send_message_error_mapping(http, expected):
    client = JellyfinClient("http://jf.local", "secret", session=http)

    with pytest.raises(expected) as info:
        client.send_message("sess-1", "Header", "Text", 5000)

    assert isinstance(info.value, NotificationError)
    assert info.value.session_id == "sess-1"


def test_client_requires_base_url():
    with pytest.raises(ValueError):
        JellyfinClient("", "secret", session=DummyHttp())


def _types(events):
    return [(event.type, event.session_id, event.item_id) for event in events]


def test_poller_first_listing_is_baseline():
    poller = SessionPoller(JellyfinClient("http://jf.local", "k", session=DummyHttp()), EventBus())

    assert poller.diff([make_session()]) == []


def test_poller_emits_lifecycle_transitions():
    poller = SessionPoller(JellyfinClient("http://jf.local", "k", session=DummyHttp()), EventBus())
    poller.diff([make_session(item_id=None)])

    started = poller.diff([make_session(), make_session(session_id="sess-2", item_id=None)])
    assert _types(started) == [
        (LifecycleEventType.PLAYBACK_START, "sess-1", "item-1"),
        (LifecycleEventType.SESSION_STARTED, "sess-2", None),
    ]

    changed = poller.diff([make_session(item_id="item-2"), make_session(session_id="sess-2", item_id=None)])
    assert _types(changed) == [
        (LifecycleEventType.PLAYBACK_STOPPED, "sess-1", "item-1"),
        (LifecycleEventType.PLAYBACK_START, "sess-1", "item-2"),
    ]

    gone = poller.diff([make_session(session_id="sess-2", item_id=None)])
    assert _types(gone) == [(LifecycleEventType.PLAYBACK_STOPPED, "sess-1", "item-2")]
    assert gone[0].user_id == "user-1"


@pytest.mark.anyio("asyncio")
async def test_poller_poll_once_publishes_on_bus():
    http = DummyHttp(DummyResp([]))
    bus = EventBus()
    seen = []
    bus.subscribe(LifecycleEventType.SESSION_STARTED, seen.append)
    poller = SessionPoller(JellyfinClient("http://jf.local", "k", session=http), bus)

    assert await poller.poll_once() == []
    http.response = DummyResp([PAYLOAD])
    events = await poller.poll_once()

    assert [event.type for event in events] == [
        LifecycleEventType.SESSION_STARTED,
        LifecycleEventType.PLAYBACK_START,
    ]
    assert [event.session_id for event in seen] == ["sess-1"]
