"""
HTTP client for the audio-synthesis provider.

Talks to a Suno-compatible REST API via httpx. Submissions return an opaque
task id; completion arrives either as a webhook callback or through
`query()`. Both shapes are normalized by `parse_task_payload()`.

The provider has shipped several payload layouts over time:

    { data: { task_id, callbackType, data: [...] } }
    { taskId, status, musics: [...] }
    { task_id, status, data: [...] }
    { id, status, clips: [...] }
"""

import logging
from typing import Any

import httpx

from app.config import settings
from app.services.audio.types import AudioRequest, AudioTaskResult, AudioTaskState, AudioTrack
from app.services.fulfillment.exceptions import UpstreamGenerationError

logger = logging.getLogger(__name__)

PROVIDER = "audio"

COMPLETE_STATES = frozenset({"complete", "completed", "success", "succeeded"})
FAILED_STATES = frozenset(
    {
        "error",
        "failed",
        "failure",
        "create_task_failed",
        "generate_audio_failed",
        "callback_exception",
        "sensitive_word_error",
    }
)

TRACK_LIST_KEYS = ("data", "musics", "Musics", "clips", "music", "songs", "audios")


def _first(mapping: dict[str, Any] | None, *keys: str) -> Any:
    if not isinstance(mapping, dict):
        return None
    for key in keys:
        value = mapping.get(key)
        if value not in (None, ""):
            return value
    return None


def _extract_task_id(payload: dict[str, Any]) -> str:
    data = payload.get("data") if isinstance(payload.get("data"), dict) else None
    value = _first(data, "task_id", "taskId") or _first(payload, "taskId", "task_id", "id")
    if value is None:
        value = _first(data, "id")
    return str(value) if value is not None else ""


def _extract_state(payload: dict[str, Any]) -> str:
    data = payload.get("data") if isinstance(payload.get("data"), dict) else None
    value = (
        _first(data, "callbackType")
        or _first(payload, "callbackType")
        or _first(payload, "status")
        or _first(data, "status")
    )
    return str(value).lower() if value is not None else ""


def _extract_track_list(payload: dict[str, Any]) -> list[dict[str, Any]]:
    data = payload.get("data")
    candidates: list[Any] = []
    if isinstance(data, dict):
        candidates.extend(data.get(key) for key in TRACK_LIST_KEYS)
        # The nested poll response wraps tracks one level deeper
        response = data.get("response")
        if isinstance(response, dict):
            candidates.extend(response.get(key) for key in ("sunoData", *TRACK_LIST_KEYS))
    elif isinstance(data, list):
        candidates.append(data)
    candidates.extend(payload.get(key) for key in ("musics", "Musics", "clips"))

    for candidate in candidates:
        if isinstance(candidate, list) and candidate:
            return [item for item in candidate if isinstance(item, dict)]
        if isinstance(candidate, dict) and candidate:
            return [candidate]

    # A bare data object that is itself a track
    if isinstance(data, dict) and _first(data, "audio_url", "audioUrl", "AudioUrl"):
        return [data]
    return []


def _to_track(item: dict[str, Any]) -> AudioTrack | None:
    audio_url = _first(item, "audio_url", "audioUrl", "AudioUrl", "url")
    if not audio_url:
        return None
    duration = _first(item, "duration")
    try:
        duration = float(duration) if duration is not None else None
    except (TypeError, ValueError):
        duration = None
    clip_id = _first(item, "id", "clipId", "musicId", "audioId")
    return AudioTrack(
        audio_url=str(audio_url),
        cover_url=_first(item, "image_url", "imageUrl", "cover_url", "coverUrl"),
        title=_first(item, "title"),
        clip_id=str(clip_id) if clip_id is not None else None,
        duration=duration,
    )


def parse_task_payload(payload: dict[str, Any], task_id: str | None = None) -> AudioTaskResult:
    """Normalize any known provider payload into an `AudioTaskResult`.

    Tracks without an audio URL are dropped and counted in `skipped_tracks`.
    A task that reports completion but carries no usable track is treated as
    failed.
    """
    resolved_id = task_id or _extract_task_id(payload)
    raw_state = _extract_state(payload)

    progress = None
    if isinstance(payload.get("data"), dict):
        progress = payload["data"].get("progress")

    items = _extract_track_list(payload)
    tracks: list[AudioTrack] = []
    skipped = 0
    for item in items:
        track = _to_track(item)
        if track is None:
            skipped += 1
            continue
        tracks.append(track)

    if raw_state in FAILED_STATES:
        error = _first(payload, "msg", "message", "error")
        if isinstance(payload.get("data"), dict):
            error = error or _first(payload["data"], "errorMessage", "error", "msg")
        return AudioTaskResult(
            task_id=resolved_id,
            state=AudioTaskState.FAILED,
            error=str(error or f"Provider reported {raw_state}"),
            raw_state=raw_state,
            skipped_tracks=skipped,
        )

    if raw_state in COMPLETE_STATES or progress == "100%":
        if not tracks:
            return AudioTaskResult(
                task_id=resolved_id,
                state=AudioTaskState.FAILED,
                error="Provider reported completion without any playable track",
                raw_state=raw_state,
                skipped_tracks=skipped,
            )
        return AudioTaskResult(
            task_id=resolved_id,
            state=AudioTaskState.COMPLETE,
            tracks=tracks,
            raw_state=raw_state,
            skipped_tracks=skipped,
        )

    return AudioTaskResult(
        task_id=resolved_id,
        state=AudioTaskState.PENDING,
        raw_state=raw_state,
        skipped_tracks=skipped,
    )


class AudioClient:
    """Submit and query audio generation tasks."""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        model: str | None = None,
        callback_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = (base_url or settings.audio_api_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.audio_api_key
        self.model = model or settings.audio_model
        self.callback_url = callback_url if callback_url is not None else settings.audio_callback_url
        self.timeout = timeout or settings.provider_timeout_seconds
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(self.timeout, connect=5.0),
            transport=self._transport,
        )

    def build_payload(self, request: AudioRequest) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "prompt": request.prompt,
            "style": request.style or "",
            "title": request.title,
            "customMode": True,
            "instrumental": False,
            "model": self.model,
        }
        if self.callback_url:
            payload["callBackUrl"] = self.callback_url
        if request.voice in ("M", "F"):
            payload["vocalGender"] = request.voice.lower()
        return payload

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        if not self.api_key:
            raise UpstreamGenerationError(PROVIDER, "AUDIO_API_KEY not configured")

        try:
            async with self._client() as client:
                response = await client.request(method, path, headers=self._headers(), **kwargs)
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(
                f"[audio] HTTP {e.response.status_code} on {method} {path}: {e.response.text[:500]}"
            )
            raise UpstreamGenerationError(
                PROVIDER, f"HTTP {e.response.status_code}", status_code=e.response.status_code
            ) from e
        except httpx.RequestError as e:
            logger.error(f"[audio] Request failed on {method} {path}: {e}")
            raise UpstreamGenerationError(PROVIDER, f"Request failed: {type(e).__name__}") from e
        except ValueError as e:
            raise UpstreamGenerationError(PROVIDER, "Response is not valid JSON") from e

        if not isinstance(body, dict):
            raise UpstreamGenerationError(PROVIDER, "Response is not a JSON object")

        # The API reports logical errors with HTTP 200 and a non-200 "code"
        code = body.get("code")
        if code is not None and code != 200:
            message = body.get("msg") or body.get("message") or f"code {code}"
            logger.error(f"[audio] Provider rejected {method} {path}: {message}")
            raise UpstreamGenerationError(
                PROVIDER, str(message), status_code=code if isinstance(code, int) else None
            )

        return body

    async def submit(self, request: AudioRequest) -> str:
        """Submit lyrics for rendering and return the provider task id."""
        body = await self._request("POST", "/api/v1/generate", json=self.build_payload(request))
        task_id = _extract_task_id(body)
        if not task_id:
            raise UpstreamGenerationError(PROVIDER, "Response did not include a task id")
        logger.info(f"[audio] Submitted '{request.title}' as task {task_id}")
        return task_id

    async def query(self, task_id: str) -> AudioTaskResult:
        """Fetch the current state of a task."""
        body = await self._request("GET", "/api/v1/query", params={"id": task_id})
        return parse_task_payload(body, task_id=task_id)


audio_client = AudioClient()
