"""Tests for the refresh orchestration."""
import asyncio
from datetime import datetime, timezone

import httpx

from yoto_f1.errors import UpstreamDataError
from yoto_f1.models.narration import NarrationScript, ScriptChapter, ScriptTrack
from yoto_f1.pipeline import LabsRenderer, UploadRenderer
from yoto_f1.refresh import RefreshService
from yoto_f1.storage.identity import CARD_ID_KEY, FINGERPRINT_KEY, PLAYLIST_TITLE_KEY

from conftest import (
    FakeSynth,
    StaticProvider,
    make_client,
    make_identity,
    make_settings,
    make_snapshot,
    png_bytes,
)

UTC = timezone.utc


class FailingProvider:
    async def fetch_snapshot(self):
        raise UpstreamDataError("Race data worker returned no race data")


def _service(fake_yoto, clock, snapshot=None, identity=None, synth=None, provider=None, **settings):
    identity = identity or make_identity()
    client = make_client(fake_yoto, identity)
    renderer = UploadRenderer(
        client,
        synth or FakeSynth(),
        isolate_failures=settings.pop("isolate", False),
        sleep=clock.sleep,
        clock=clock,
    )
    return RefreshService(
        client,
        identity,
        provider or StaticProvider(snapshot or make_snapshot()),
        renderer,
        settings=make_settings(**settings),
        now=lambda: datetime(2025, 3, 10, 12, 0, tzinfo=UTC),
    )


def _content_posts(fake_yoto):
    return [p for p in fake_yoto.paths("POST") if p == "/content"]


class TestRefresh:
    def test_first_refresh_creates_and_deploys(self, fake_yoto, clock):
        service = _service(fake_yoto, clock)
        result = asyncio.run(service.refresh())

        assert result.success
        assert result.isUpdate is False
        assert result.cardId == "card-1"
        assert result.title == "F1: Australian Grand Prix"
        assert result.dataHash == "hash-1"
        assert result.race["name"] == "Australian Grand Prix"
        assert result.deployment.succeeded == 1
        assert fake_yoto.deployed == [("d1", "card-1")]
        assert service.identity.card_id == "card-1"
        assert service.identity.playlist_title == "F1: Australian Grand Prix"
        assert service.identity.content_fingerprint == "hash-1"
        card = fake_yoto.cards["card-1"]
        assert card["metadata"]["description"] == "F1 Update - Monday, March 10, 2025"

    def test_unchanged_data_is_skipped(self, fake_yoto, clock):
        synth = FakeSynth()
        service = _service(fake_yoto, clock, synth=synth)
        asyncio.run(service.refresh())
        synthesized = len(synth.calls)
        result = asyncio.run(service.refresh("scheduled"))

        assert result.success
        assert result.skipped
        assert result.trigger == "scheduled"
        assert result.cardId == "card-1"
        assert len(_content_posts(fake_yoto)) == 1
        assert len(fake_yoto.deployed) == 1
        assert synthesized > 0
        assert len(synth.calls) == synthesized

    def test_weather_change_is_not_skipped(self, fake_yoto, clock):
        snapshot = make_snapshot(data_hash=None)
        service = _service(fake_yoto, clock, snapshot=snapshot)
        asyncio.run(service.refresh())
        wet = snapshot.weather.model_copy(update={"rainfall": True, "airTemperature": 12.0})
        service.provider = StaticProvider(snapshot.model_copy(update={"weather": wet}))
        result = asyncio.run(service.refresh())

        assert not result.skipped
        assert result.isUpdate is True
        assert len(_content_posts(fake_yoto)) == 2

    def test_force_rebuilds_unchanged_data(self, fake_yoto, clock):
        service = _service(fake_yoto, clock)
        asyncio.run(service.refresh())
        result = asyncio.run(service.refresh(force=True))
        assert not result.skipped
        assert result.isUpdate is True
        assert len(_content_posts(fake_yoto)) == 2

    def test_changed_data_updates_in_place_with_stable_title(self, fake_yoto, clock):
        service = _service(fake_yoto, clock)
        asyncio.run(service.refresh())
        service.provider = StaticProvider(make_snapshot(data_hash="hash-2", name="Chinese Grand Prix"))
        result = asyncio.run(service.refresh())

        assert result.isUpdate is True
        assert result.cardId == "card-1"
        assert result.title == "F1: Australian Grand Prix"
        assert list(fake_yoto.cards) == ["card-1"]
        assert fake_yoto.cards["card-1"]["title"] == "F1: Australian Grand Prix"
        intro = fake_yoto.cards["card-1"]["content"]["chapters"][0]["tracks"][0]
        assert intro["title"] == "Chinese Grand Prix"
        assert service.identity.content_fingerprint == "hash-2"

    def test_fingerprint_without_card_does_not_skip(self, fake_yoto, clock):
        identity = make_identity(**{FINGERPRINT_KEY: "hash-1"})
        result = asyncio.run(_service(fake_yoto, clock, identity=identity).refresh())
        assert not result.skipped
        assert result.cardId == "card-1"

    def test_deleted_card_is_recreated(self, fake_yoto, clock):
        identity = make_identity(
            **{CARD_ID_KEY: "deleted", PLAYLIST_TITLE_KEY: "My F1 Card", FINGERPRINT_KEY: "old"}
        )
        result = asyncio.run(_service(fake_yoto, clock, identity=identity).refresh())
        assert result.success
        assert result.cardId == "card-1"
        assert result.isUpdate is False
        assert "not found" in result.fallbackReason
        assert result.title == "My F1 Card"
        assert identity.card_id == "card-1"

    def test_not_authenticated(self, fake_yoto, clock):
        service = _service(fake_yoto, clock, identity=make_identity(tokens=False))
        result = asyncio.run(service.refresh())
        assert not result.success
        assert result.needsReauth
        assert result.errorKind == "AuthenticationError"
        assert fake_yoto.requests == []
        assert service.provider.calls == 0

    def test_backend_failure_leaves_identity_untouched(self, fake_yoto, clock):
        identity = make_identity(**{CARD_ID_KEY: "card-9", PLAYLIST_TITLE_KEY: "F1", FINGERPRINT_KEY: "old"})
        fake_yoto.content_status = 500
        result = asyncio.run(_service(fake_yoto, clock, identity=identity).refresh())
        assert not result.success
        assert not result.needsReauth
        assert result.errorKind == "ContentBackendError"
        assert identity.card_id == "card-9"
        assert identity.content_fingerprint == "old"
        assert fake_yoto.deployed == []

    def test_missing_synthesizer_fails_before_any_request(self, fake_yoto, clock, tmp_path):
        cover = tmp_path / "cover.png"
        cover.write_bytes(png_bytes())
        service = _service(fake_yoto, clock, cover_path=cover)
        service.renderer.synthesizer = None
        result = asyncio.run(service.refresh())

        assert not result.success
        assert result.errorKind == "ConfigurationError"
        assert "ELEVENLABS_API_KEY" in result.error
        assert fake_yoto.requests == []
        assert service.identity.card_id is None

    def test_upstream_failure(self, fake_yoto, clock):
        result = asyncio.run(_service(fake_yoto, clock, provider=FailingProvider()).refresh())
        assert not result.success
        assert result.errorKind == "UpstreamDataError"
        assert _content_posts(fake_yoto) == []

    def test_deployment_failure_is_not_fatal(self, fake_yoto, clock):
        fake_yoto.devices_status = 500
        service = _service(fake_yoto, clock)
        result = asyncio.run(service.refresh())
        assert result.success
        assert result.deployment is None
        assert "Listing devices" in result.deploymentError
        assert service.identity.card_id == "card-1"

    def test_dropped_tracks_keep_next_refresh_from_skipping(self, fake_yoto, clock):
        service = _service(
            fake_yoto, clock, synth=FakeSynth(fail_on=("Qualifying is on",)), isolate=True
        )
        first = asyncio.run(service.refresh())
        assert first.success
        assert service.identity.content_fingerprint is None

        service.renderer.synthesizer = FakeSynth()
        second = asyncio.run(service.refresh())
        assert not second.skipped
        assert second.isUpdate is True
        assert service.identity.content_fingerprint == "hash-1"


class TestSideUploads:
    def test_cover_failure_still_creates_card(self, fake_yoto, clock, tmp_path):
        cover = tmp_path / "cover.png"
        cover.write_bytes(png_bytes())
        fake_yoto.cover_status = 500
        result = asyncio.run(_service(fake_yoto, clock, cover_path=cover).refresh())
        assert result.success
        assert result.cardId == "card-1"
        assert result.sideUploads["cover"].startswith("omitted: cover upload failed")

    def test_cover_and_icon_attached(self, fake_yoto, clock, tmp_path):
        cover = tmp_path / "cover.png"
        cover.write_bytes(png_bytes())
        icon = tmp_path / "f1.png"
        icon.write_bytes(png_bytes(64))
        result = asyncio.run(_service(fake_yoto, clock, cover_path=cover, icon_path=icon).refresh())

        assert result.sideUploads["cover"] == "attached"
        assert result.sideUploads["icon"] == "attached"
        card = fake_yoto.cards["card-1"]
        assert card["metadata"]["cover"]["imageL"] == "https://cdn.example.com/cover.png"
        chapter = card["content"]["chapters"][0]
        assert chapter["display"]["icon16x16"].startswith("yoto:#icon-")

    def test_unconfigured_artwork_is_omitted(self, fake_yoto, clock):
        result = asyncio.run(_service(fake_yoto, clock).refresh())
        assert result.sideUploads == {
            "icon": "omitted: no card icon configured",
            "flag": "omitted: race has no country flag",
            "cover": "omitted: no cover image configured",
        }

    def test_flag_icon_on_circuit_track(self, fake_yoto, clock):
        snapshot = make_snapshot(flag="https://flags.example.com/australia.png")
        result = asyncio.run(_service(fake_yoto, clock, snapshot=snapshot).refresh())
        assert result.sideUploads["flag"] == "attached"
        circuit = fake_yoto.cards["card-1"]["content"]["chapters"][0]["tracks"][1]
        assert circuit["display"]["icon16x16"].startswith("yoto:#icon-")

    def test_icon_failure_is_omitted(self, fake_yoto, clock, tmp_path):
        icon = tmp_path / "f1.png"
        icon.write_bytes(png_bytes())
        fake_yoto.icon_status = 500
        result = asyncio.run(_service(fake_yoto, clock, icon_path=icon).refresh())
        assert result.success
        assert result.sideUploads["icon"].startswith("omitted: icon upload failed")

    def test_unreadable_icon_is_omitted(self, fake_yoto, clock, tmp_path):
        icon = tmp_path / "f1.png"
        icon.write_bytes(b"not an image")
        result = asyncio.run(_service(fake_yoto, clock, icon_path=icon).refresh())
        assert result.success
        assert result.sideUploads["icon"].startswith("omitted")


class TestPublishing:
    def _script(self):
        return NarrationScript(
            chapters=(ScriptChapter(title="News", tracks=(ScriptTrack(title="Hi", text="Hello"),)),)
        )

    def test_send_script_updates_managed_card_and_clears_fingerprint(self, fake_yoto, clock):
        service = _service(fake_yoto, clock)
        asyncio.run(service.refresh())
        result = asyncio.run(service.send_script("F1: Custom", self._script()))

        assert result.success
        assert result.isUpdate is True
        assert result.cardId == "card-1"
        assert service.identity.playlist_title == "F1: Custom"
        assert service.identity.content_fingerprint is None
        assert len(fake_yoto.deployed) == 2

    def test_send_script_as_new_card(self, fake_yoto, clock):
        service = _service(fake_yoto, clock)
        asyncio.run(service.refresh())
        result = asyncio.run(service.send_script("F1: Custom", self._script(), update_existing=False))
        assert result.isUpdate is False
        assert result.cardId == "card-2"

    def test_upload_audio_is_tracked_separately(self, fake_yoto, clock):
        service = _service(fake_yoto, clock)
        asyncio.run(service.refresh())
        result = asyncio.run(service.upload_audio("F1 Update", b"mp3", "update.mp3"))

        assert result.success
        assert result.cardId == "card-2"
        assert service.identity.myo_card_id == "card-2"
        assert service.identity.card_id == "card-1"
        assert len(fake_yoto.deployed) == 1

    def test_upload_audio_updates_existing_myo_card(self, fake_yoto, clock):
        service = _service(fake_yoto, clock)
        asyncio.run(service.upload_audio("F1 Update", b"mp3", "update.mp3"))
        result = asyncio.run(service.upload_audio("F1 Update", b"mp3-2", "update.mp3", update_existing=True))
        assert result.isUpdate is True
        assert result.cardId == "card-1"

    def test_send_script_without_synthesizer(self, fake_yoto, clock):
        service = _service(fake_yoto, clock)
        service.renderer.synthesizer = None
        result = asyncio.run(service.send_script("F1", self._script()))
        assert result.errorKind == "ConfigurationError"
        assert fake_yoto.requests == []

    def test_upload_audio_needs_no_synthesizer(self, fake_yoto, clock):
        service = _service(fake_yoto, clock)
        service.renderer.synthesizer = None
        result = asyncio.run(service.upload_audio("F1 Update", b"mp3", "update.mp3"))
        assert result.success

    def test_send_script_not_authenticated(self, fake_yoto, clock):
        service = _service(fake_yoto, clock, identity=make_identity(tokens=False))
        result = asyncio.run(service.send_script("F1", self._script()))
        assert result.needsReauth

    def test_job_status(self, clock):
        def handler(request):
            return httpx.Response(200, json={"job": {"jobId": "j1", "status": "processing", "progress": 40}})

        identity = make_identity()
        client = make_client(handler, identity)
        service = RefreshService(
            client,
            identity,
            StaticProvider(make_snapshot()),
            LabsRenderer(client, "voice-1", sleep=clock.sleep, clock=clock),
            settings=make_settings(),
        )
        job = asyncio.run(service.job_status("j1"))
        assert job.progress == 40
        assert service.upload_renderer.supports_update


class TestFromSettings:
    def test_labs_backend(self):
        service = RefreshService.from_settings(
            make_settings(YOTO_F1_TTS_BACKEND="labs"), identity=make_identity()
        )
        assert isinstance(service.renderer, LabsRenderer)
        asyncio.run(service.aclose())

    def test_elevenlabs_without_key_fails_before_any_request(self, monkeypatch, tmp_path):
        monkeypatch.delenv("ELEVENLABS_API_KEY", raising=False)
        cover = tmp_path / "cover.png"
        cover.write_bytes(png_bytes())
        seen = []

        def handler(request):
            seen.append(request.url.path)
            return httpx.Response(500)

        service = RefreshService.from_settings(
            make_settings(cover_path=cover),
            identity=make_identity(),
            http=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )
        assert isinstance(service.renderer, UploadRenderer)
        assert service.renderer.synthesizer is None
        result = asyncio.run(service.refresh())
        asyncio.run(service.aclose())

        assert result.errorKind == "ConfigurationError"
        assert seen == []

    def test_elevenlabs_with_key(self):
        service = RefreshService.from_settings(
            make_settings(elevenlabs_api_key="k", YOTO_F1_MAX_CONCURRENT_UPLOADS=2),
            identity=make_identity(),
        )
        assert service.renderer.synthesizer is not None
        assert service.renderer.max_concurrency == 2
        asyncio.run(service.aclose())
