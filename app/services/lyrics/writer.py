"""Claude-powered lyric writer.

Turns a customer's quiz brief (plus optional rejection feedback) into a
titled set of song sections. The class owns prompt construction and output
parsing; the workflow only sees `GeneratedLyrics` or an
`UpstreamGenerationError`.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

import anthropic

from app.config import settings
from app.services.fulfillment.exceptions import UpstreamGenerationError
from app.services.lyrics.claude_helpers import call_with_retry
from app.services.lyrics.parsing import extract_json_object, parse_sections

logger = logging.getLogger(__name__)

PROVIDER = "lyrics"


@dataclass
class LyricsBrief:
    """Input for lyric generation, built from a Quiz."""

    about_who: str
    relationship: str | None = None
    occasion: str | None = None
    style: str | None = None
    language: str = "pt"
    qualities: str | None = None
    memories: str | None = None
    message: str | None = None
    previous_feedback: str | None = None
    regeneration_count: int = 0


@dataclass
class GeneratedLyrics:
    """Output of lyric generation."""

    title: str
    verses: list[dict[str, str]]
    style: str | None = None
    language: str = "pt"
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "verses": self.verses,
            "style": self.style,
            "language": self.language,
            **self.extra,
        }


class LyricsWriter:
    """Writes personalized lyrics with Claude."""

    max_tokens: int = 2000

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
    ):
        self.api_key = api_key or settings.anthropic_api_key
        self.model = model or settings.lyrics_model
        self.timeout = timeout or settings.provider_timeout_seconds
        self._client: anthropic.AsyncAnthropic | None = None

    @property
    def client(self) -> anthropic.AsyncAnthropic:
        if self._client is None:
            self._client = anthropic.AsyncAnthropic(
                api_key=self.api_key,
                timeout=self.timeout,
                max_retries=0,  # retries handled by call_with_retry
            )
        return self._client

    def get_system_prompt(self) -> str:
        return """You are a professional songwriter who writes personalized songs as gifts.

TASK: Write complete, singable lyrics from the customer's brief.

RULES:
1. Write in the language requested in the brief
2. Mention the honoree by name and weave in the memories and qualities provided
3. Structure: [Verse 1], [Pre-Chorus], [Chorus], [Verse 2], [Chorus], [Bridge], [Chorus]
4. Keep lines short and rhythmic, suited to the requested musical style
5. Never include offensive content, brand names or real artists
6. If revision feedback is present, address it directly while keeping what worked

OUTPUT FORMAT: a single JSON object and nothing else:
{"title": "<song title>", "lyrics": "<full lyrics with [Section] headers on their own lines>"}"""

    def format_input(self, brief: LyricsBrief) -> str:
        """Convert a brief into the user prompt."""
        lines = [f"Honoree: {brief.about_who}"]
        if brief.relationship:
            lines.append(f"Relationship to customer: {brief.relationship}")
        if brief.occasion:
            lines.append(f"Occasion: {brief.occasion}")
        if brief.style:
            lines.append(f"Musical style: {brief.style}")
        lines.append(f"Language: {brief.language}")
        if brief.qualities:
            lines.append(f"\nQualities:\n{brief.qualities}")
        if brief.memories:
            lines.append(f"\nShared memories:\n{brief.memories}")
        if brief.message:
            lines.append(f"\nMessage the customer wants to convey:\n{brief.message}")

        if brief.previous_feedback:
            lines.append(
                f"\nREVISION {brief.regeneration_count}: the customer rejected the previous "
                f"version with this feedback:\n{brief.previous_feedback}"
            )

        return "\n".join(lines)

    def parse_output(self, response_text: str, brief: LyricsBrief) -> GeneratedLyrics:
        """Parse the model's JSON into structured lyrics.

        Raises:
            UpstreamGenerationError: on empty or malformed content.
        """
        if not response_text or not response_text.strip():
            raise UpstreamGenerationError(PROVIDER, "Empty response from model")

        try:
            data = extract_json_object(response_text)
        except ValueError as e:
            raise UpstreamGenerationError(PROVIDER, str(e)) from e

        title = data.get("title")
        lyrics_text = data.get("lyrics")
        if not isinstance(title, str) or not title.strip():
            raise UpstreamGenerationError(PROVIDER, "Response has no title")
        if not isinstance(lyrics_text, str) or not lyrics_text.strip():
            raise UpstreamGenerationError(PROVIDER, "Response has no lyrics")

        verses = parse_sections(lyrics_text)
        if not verses:
            raise UpstreamGenerationError(PROVIDER, "Lyrics contain no sections")

        return GeneratedLyrics(
            title=title.strip(),
            verses=verses,
            style=brief.style,
            language=brief.language,
        )

    async def write(self, brief: LyricsBrief) -> GeneratedLyrics:
        """Main entry point: generate lyrics for a brief."""
        if not self.api_key:
            raise UpstreamGenerationError(PROVIDER, "ANTHROPIC_API_KEY not configured")

        user_message = self.format_input(brief)

        async def _call() -> anthropic.types.Message:
            return await self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                system=self.get_system_prompt(),
                messages=[{"role": "user", "content": user_message}],
            )

        try:
            response = await call_with_retry(_call, operation_name="Lyrics generation")
        except anthropic.APIStatusError as e:
            logger.error(f"[lyrics] Provider returned HTTP {e.status_code}: {e.message}")
            raise UpstreamGenerationError(PROVIDER, e.message, status_code=e.status_code) from e
        except anthropic.APIError as e:
            logger.error(f"[lyrics] Provider call failed: {e}")
            raise UpstreamGenerationError(PROVIDER, str(e)) from e

        text_blocks = [block.text for block in response.content if hasattr(block, "text")]
        return self.parse_output("".join(text_blocks), brief)


lyrics_writer = LyricsWriter()
