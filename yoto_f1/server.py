"""FastAPI application exposing auth, refresh, webhook and publishing routes.

Every route is a thin shell over :class:`~yoto_f1.refresh.RefreshService`.
Routes that need a Yoto login answer ``401`` with ``needsAuth: true`` when
the stored credentials are missing or can no longer be refreshed.
"""

from __future__ import annotations

import hmac
import secrets
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

import httpx
from fastapi import APIRouter, Depends, FastAPI, File, Form, Header, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse, RedirectResponse
from loguru import logger
from pydantic import BaseModel

from .api import auth
from .errors import AuthenticationError, ConfigurationError, UpstreamDataError, YotoF1Error
from .models.narration import NarrationScript, ScriptChapter, ScriptTrack
from .models.results import RefreshResult
from .refresh import RefreshService
from .storage.config import Settings, get_settings

_AUDIO_FILE_UPLOAD = File(...)

router = APIRouter(prefix="/api")


# ------------------------------------------------------------------
# Request bodies
# ------------------------------------------------------------------


class SendTrack(BaseModel):
    title: str
    text: str
    icon: str | None = None
    voiceId: str | None = None


class SendChapter(BaseModel):
    title: str
    icon: str | None = None
    tracks: list[SendTrack]


class SendToYotoBody(BaseModel):
    title: str = "F1: Next Race"
    chapters: list[SendChapter] = []
    updateExisting: bool = True

    def to_script(self) -> NarrationScript:
        return NarrationScript(
            chapters=tuple(
                ScriptChapter(
                    title=chapter.title,
                    icon=chapter.icon,
                    tracks=tuple(
                        ScriptTrack(
                            title=track.title, text=track.text, icon=track.icon, voiceId=track.voiceId
                        )
                        for track in chapter.tracks
                    ),
                )
                for chapter in self.chapters
            )
        )


# ------------------------------------------------------------------
# Dependencies and helpers
# ------------------------------------------------------------------


def get_service(request: Request) -> RefreshService:
    return request.app.state.service


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def _auth_required(message: str = "Not authenticated. Please connect with Yoto first.") -> JSONResponse:
    return JSONResponse({"error": message, "needsAuth": True}, status_code=401)


def _result_response(result: RefreshResult) -> JSONResponse:
    body = result.model_dump(mode="json")
    if result.needsReauth:
        return JSONResponse({**body, "needsAuth": True}, status_code=401)
    if result.success:
        return JSONResponse(body)
    status = {
        ConfigurationError.__name__: 400,
        UpstreamDataError.__name__: 502,
    }.get(result.errorKind or "", 500)
    return JSONResponse(body, status_code=status)


def _check_webhook_secret(settings: Settings, provided: str | None) -> JSONResponse | None:
    try:
        settings.require("webhook_secret")
    except ConfigurationError as exc:
        return JSONResponse({"error": f"Webhook not configured. {exc}"}, status_code=500)
    expected = settings.secret("webhook_secret")
    if not provided or not hmac.compare_digest(provided, expected):
        return JSONResponse({"error": "Unauthorized. Invalid webhook secret."}, status_code=401)
    return None


# ------------------------------------------------------------------
# Auth routes
# ------------------------------------------------------------------


@router.get("/auth/login")
def login(request: Request, settings: Settings = Depends(get_app_settings)):
    """Redirect the browser to the Yoto login page."""
    state = secrets.token_urlsafe(16)
    request.app.state.oauth_state = state
    return RedirectResponse(
        auth.build_authorize_url(settings.yoto_client_id, settings.yoto_redirect_uri, state),
        status_code=302,
    )


@router.get("/auth/callback")
async def callback(
    request: Request,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    service: RefreshService = Depends(get_service),
    settings: Settings = Depends(get_app_settings),
):
    """Exchange the authorization code and store the resulting tokens."""
    if error or not code:
        raise HTTPException(status_code=400, detail=error or "Missing authorization code")
    expected = getattr(request.app.state, "oauth_state", None)
    if expected and state != expected:
        raise HTTPException(status_code=400, detail="OAuth state mismatch")
    async with httpx.AsyncClient(timeout=30.0) as http:
        try:
            tokens = await auth.exchange_code(
                http,
                settings.yoto_client_id,
                settings.secret("yoto_client_secret"),
                code,
                settings.yoto_redirect_uri,
            )
        except AuthenticationError as exc:
            return _auth_required(str(exc))
    service.client.set_tokens(tokens)
    request.app.state.oauth_state = None
    logger.info("Connected to Yoto")
    return {"success": True, "authenticated": True}


@router.get("/auth/status")
def auth_status(service: RefreshService = Depends(get_service)) -> dict[str, Any]:
    return {
        "authenticated": service.client.is_authenticated,
        "cardId": service.identity.card_id,
        "playlistTitle": service.identity.playlist_title,
    }


@router.post("/auth/logout")
def logout(service: RefreshService = Depends(get_service)) -> dict[str, Any]:
    service.client.clear_tokens()
    return {"success": True}


# ------------------------------------------------------------------
# Refresh routes
# ------------------------------------------------------------------


@router.post("/refresh-myo-playlist")
async def refresh_playlist(force: bool = False, service: RefreshService = Depends(get_service)):
    """Refresh the managed card from the latest race data."""
    return _result_response(await service.refresh("manual", force=force))


@router.post("/webhook/refresh-playlist")
async def webhook_refresh(
    force: bool = False,
    x_webhook_secret: str | None = Header(default=None),
    service: RefreshService = Depends(get_service),
    settings: Settings = Depends(get_app_settings),
):
    """Refresh triggered by a scheduler; requires ``X-Webhook-Secret``."""
    denied = _check_webhook_secret(settings, x_webhook_secret)
    if denied is not None:
        return denied
    return _result_response(await service.refresh("webhook", force=force))


@router.get("/webhook/refresh-playlist")
def webhook_status(
    x_webhook_secret: str | None = Header(default=None),
    service: RefreshService = Depends(get_service),
    settings: Settings = Depends(get_app_settings),
):
    denied = _check_webhook_secret(settings, x_webhook_secret)
    if denied is not None:
        return denied
    return {
        "status": "active",
        "configured": {
            "authentication": service.client.is_authenticated,
            "cloudflareWorker": bool(settings.cloudflare_worker_url),
            "webhookSecret": True,
        },
        "workerUrl": settings.cloudflare_worker_url,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


# ------------------------------------------------------------------
# Publishing routes
# ------------------------------------------------------------------


@router.post("/send-to-yoto")
async def send_to_yoto(body: SendToYotoBody, service: RefreshService = Depends(get_service)):
    if not service.client.is_authenticated:
        return _auth_required()
    if not body.chapters or not any(chapter.tracks for chapter in body.chapters):
        raise HTTPException(status_code=400, detail="No chapters data provided")
    result = await service.send_script(body.title, body.to_script(), body.updateExisting)
    return _result_response(result)


@router.post("/upload-to-myo")
async def upload_to_myo(
    audio: UploadFile = _AUDIO_FILE_UPLOAD,
    title: str = Form("F1 Update"),
    updateExisting: bool = Form(False),
    service: RefreshService = Depends(get_service),
):
    if not service.client.is_authenticated:
        return _auth_required()
    data = await audio.read()
    if not data:
        raise HTTPException(status_code=400, detail="No audio file provided")
    logger.info(f"Uploading audio file {audio.filename} ({len(data)} bytes)")
    result = await service.upload_audio(title, data, audio.filename or "audio.mp3", updateExisting)
    return _result_response(result)


@router.get("/job-status")
async def job_status(jobId: str | None = None, service: RefreshService = Depends(get_service)):
    if not service.client.is_authenticated:
        return _auth_required()
    if not jobId:
        raise HTTPException(status_code=400, detail="Missing jobId parameter")
    try:
        job = await service.job_status(jobId)
    except AuthenticationError:
        return _auth_required()
    except (YotoF1Error, httpx.HTTPError) as exc:
        logger.error(f"Job status check error: {exc}")
        return JSONResponse({"error": str(exc)}, status_code=500)
    return {"success": True, "job": job.model_dump()}


# ------------------------------------------------------------------
# Application factory
# ------------------------------------------------------------------


def create_app(settings: Settings | None = None, service: RefreshService | None = None) -> FastAPI:
    """Build the FastAPI app; *service* may be injected for tests."""
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await app.state.service.aclose()

    app = FastAPI(
        title="Yoto F1 Card",
        description="Keeps a Yoto MYO card narrating the next Formula 1 race weekend",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.service = service or RefreshService.from_settings(settings)
    app.state.oauth_state = None
    app.include_router(router)
    return app
