from app.services.audio.client import AudioClient, audio_client, parse_task_payload
from app.services.audio.types import AudioRequest, AudioTaskResult, AudioTaskState, AudioTrack

__all__ = [
    "AudioClient",
    "AudioRequest",
    "AudioTaskResult",
    "AudioTaskState",
    "AudioTrack",
    "audio_client",
    "parse_task_payload",
]
