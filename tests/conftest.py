"""Shared fakes: an in-memory Yoto backend, a synthesizer and a fake clock."""
import io
import json
import re
from datetime import datetime, timezone

import httpx
import pytest
from PIL import Image

from yoto_f1.api.client import YotoClient
from yoto_f1.errors import SynthesisError
from yoto_f1.models.race import Race, RaceWeekendSnapshot, Session, Weather
from yoto_f1.storage.config import Settings
from yoto_f1.storage.identity import IdentityStore, MemoryStore

UTC = timezone.utc


class FakeYoto:
    """Minimal stand-in for the Yoto content, media and device APIs."""

    def __init__(self, devices=None, failing_devices=()):
        self.cards = {}
        self.requests = []
        self.next_id = 0
        self.devices = [{"deviceId": "d1", "name": "Kitchen"}] if devices is None else devices
        self.failing_devices = set(failing_devices)
        self.device_statuses = {}
        self.deployed = []
        self.uploads = {}
        self.put_bytes = {}
        self.icon_status = 200
        self.cover_status = 200
        self.devices_status = 200
        self.content_status = None
        self.omit_card_id = False

    def paths(self, method=None):
        return [path for m, _, path in self.requests if method is None or m == method]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        method, host, path = request.method, request.url.host, request.url.path
        self.requests.append((method, host, path))

        if host == "uploads.example.com" and method == "PUT":
            self.put_bytes[path] = request.content
            return httpx.Response(200)

        if path == "/content" and method == "POST":
            if self.content_status:
                return httpx.Response(self.content_status, json={"error": "nope"})
            body = json.loads(request.content)
            card_id = body.get("cardId")
            if card_id:
                if card_id not in self.cards:
                    return httpx.Response(404, json={"error": "Card not found"})
            else:
                self.next_id += 1
                card_id = f"card-{self.next_id}"
            body["cardId"] = card_id
            self.cards[card_id] = body
            if self.omit_card_id:
                body = {k: v for k, v in body.items() if k != "cardId"}
            return httpx.Response(200, json={"card": body})

        if path == "/media/transcode/audio/uploadUrl":
            sha = request.url.params["sha256"]
            upload_id = f"up-{sha[:12]}"
            self.uploads[upload_id] = sha
            return httpx.Response(
                200,
                json={"upload": {"uploadId": upload_id, "uploadUrl": f"https://uploads.example.com/{upload_id}"}},
            )

        match = re.fullmatch(r"/media/upload/([^/]+)/transcoded", path)
        if match:
            sha = self.uploads[match.group(1)]
            return httpx.Response(
                200,
                json={
                    "transcode": {
                        "transcodedSha256": f"t{sha[:16]}",
                        "transcodedInfo": {"duration": 10, "fileSize": 1000, "format": "mp3", "channels": "mono"},
                    }
                },
            )

        if path == "/media/displayIcons/user/me/upload":
            if self.icon_status != 200:
                return httpx.Response(self.icon_status, text="icon refused")
            return httpx.Response(200, json={"displayIcon": {"mediaId": f"icon-{len(self.paths())}"}})

        if path == "/media/coverImage/user/me/upload":
            if self.cover_status != 200:
                return httpx.Response(self.cover_status, text="cover refused")
            return httpx.Response(200, json={"coverImage": {"mediaUrl": "https://cdn.example.com/cover.png"}})

        if path == "/device-v2/devices/mine":
            if self.devices_status != 200:
                return httpx.Response(self.devices_status, text="listing failed")
            return httpx.Response(200, json={"devices": self.devices})

        match = re.fullmatch(r"/devices/([^/]+)/playlist", path)
        if match and method == "POST":
            device_id = match.group(1)
            if device_id in self.failing_devices:
                return httpx.Response(500, text="device offline")
            if device_id in self.device_statuses:
                return httpx.Response(self.device_statuses[device_id], text="refused")
            self.deployed.append((device_id, json.loads(request.content)["cardId"]))
            return httpx.Response(200, json={"status": "ok"})

        if host == "flags.example.com":
            return httpx.Response(200, content=png_bytes(32))

        return httpx.Response(404, text=f"unexpected {method} {path}")


class FakeSynth:
    """Synthesizer returning the text itself as "audio"."""

    def __init__(self, fail_on=()):
        self.fail_on = tuple(fail_on)
        self.calls = []

    async def synthesize(self, text, voice_id=None):
        self.calls.append((text, voice_id))
        if any(marker in text for marker in self.fail_on):
            raise SynthesisError("voice unavailable")
        return text.encode()


class FakeClock:
    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    async def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def png_bytes(size=32):
    out = io.BytesIO()
    Image.new("RGB", (size, size), (200, 0, 0)).save(out, format="PNG")
    return out.getvalue()


def make_identity(tokens=True, **values):
    data = dict(values)
    if tokens is True:
        data["tokens"] = {"access_token": "access", "refresh_token": "refresh"}
    elif tokens:
        data["tokens"] = tokens
    return IdentityStore(MemoryStore(data))


def make_client(handler, identity=None):
    identity = identity or make_identity()
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return YotoClient(identity, "client-id", http=http)


def make_settings(**values):
    return Settings(_env_file=None, **values)


def make_snapshot(data_hash="hash-1", weather=True, sessions=True, flag=None, name="Australian Grand Prix"):
    race = Race(
        name=name,
        officialName="FORMULA 1 LOUIS VUITTON AUSTRALIAN GRAND PRIX 2025",
        location="Melbourne",
        country="Australia",
        circuit="Melbourne",
        circuitType="Temporary - Street",
        countryFlag=flag,
        dateStart=datetime(2025, 3, 16, 4, 0, tzinfo=UTC),
        year=2025,
        meetingKey=1254,
    )
    session_list = (
        (
            Session(sessionName="Practice 1", sessionType="Practice", dateStart=datetime(2025, 3, 14, 1, 30, tzinfo=UTC)),
            Session(sessionName="Qualifying", sessionType="Qualifying", dateStart=datetime(2025, 3, 15, 5, 0, tzinfo=UTC)),
            Session(sessionName="Race", sessionType="Race", dateStart=datetime(2025, 3, 16, 4, 0, tzinfo=UTC)),
        )
        if sessions
        else ()
    )
    return RaceWeekendSnapshot(
        race=race,
        sessions=session_list,
        weather=Weather(airTemperature=22.5, trackTemperature=31, humidity=60, rainfall=False, windSpeed=2.1)
        if weather
        else None,
        lastUpdated=datetime(2025, 3, 10, 12, 0, tzinfo=UTC),
        dataHash=data_hash,
    )


class StaticProvider:
    def __init__(self, snapshot):
        self.snapshot = snapshot
        self.calls = 0

    async def fetch_snapshot(self):
        self.calls += 1
        return self.snapshot


@pytest.fixture
def fake_yoto():
    return FakeYoto()


@pytest.fixture
def clock():
    return FakeClock()
