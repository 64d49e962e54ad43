"""Data types exchanged with the audio-synthesis provider."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class AudioTaskState(str, Enum):
    """Normalized state of a provider task."""

    PENDING = "pending"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass
class AudioRequest:
    """Submission for one approved lyric draft."""

    title: str
    prompt: str
    style: str | None = None
    voice: str | None = None  # "M" / "F"; anything else means no preference


@dataclass
class AudioTrack:
    """One rendered clip returned by the provider."""

    audio_url: str
    cover_url: str | None = None
    title: str | None = None
    clip_id: str | None = None
    duration: float | None = None


@dataclass
class AudioTaskResult:
    """Normalized view of a callback or poll response."""

    task_id: str
    state: AudioTaskState
    tracks: list[AudioTrack] = field(default_factory=list)
    error: str | None = None
    raw_state: str | None = None
    skipped_tracks: int = 0

    @property
    def is_complete(self) -> bool:
        return self.state == AudioTaskState.COMPLETE

    @property
    def is_failed(self) -> bool:
        return self.state == AudioTaskState.FAILED

    def summary(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "state": self.state.value,
            "tracks": len(self.tracks),
            "skipped": self.skipped_tracks,
        }
