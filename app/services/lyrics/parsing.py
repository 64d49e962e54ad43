"""Parsing of model output into structured lyrics."""

import json
import re
from typing import Any

# [Verse 1], [Chorus], [Pre-Chorus], [Bridge], [Outro]...
SECTION_HEADER = re.compile(r"^\s*\[([^\]]+)\]\s*$")
# "Verse 1:", "Refrão:" style headers on their own line
COLON_HEADER = re.compile(r"^\s*([A-Za-zÀ-ÿ\- ]{3,30}\s*\d*)\s*:\s*$")

SECTION_ALIASES = {
    "verso": "verse",
    "estrofe": "verse",
    "refrão": "chorus",
    "refrao": "chorus",
    "coro": "chorus",
    "pré-refrão": "pre-chorus",
    "pre-refrao": "pre-chorus",
    "ponte": "bridge",
    "final": "outro",
    "introdução": "intro",
}


def normalize_section(header: str) -> str:
    """Map a section header to a section type ("verse", "chorus"...)."""
    word = re.sub(r"\s*\d+\s*$", "", header.strip()).lower()
    word = SECTION_ALIASES.get(word, word)
    return word.replace(" ", "-") or "verse"


def parse_sections(text: str) -> list[dict[str, str]]:
    """Split lyrics text into ordered sections.

    Text before the first header, or text with no headers at all, becomes
    a single "verse" section.
    """
    sections: list[dict[str, str]] = []
    current_type = "verse"
    buffer: list[str] = []

    def flush() -> None:
        content = "\n".join(buffer).strip()
        if content:
            sections.append({"type": current_type, "text": content})
        buffer.clear()

    for line in text.splitlines():
        match = SECTION_HEADER.match(line) or COLON_HEADER.match(line)
        if match:
            flush()
            current_type = normalize_section(match.group(1))
            continue
        buffer.append(line)
    flush()

    return sections


def strip_code_fences(text: str) -> str:
    """Remove a ```json ... ``` wrapper the model sometimes adds."""
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = re.sub(r"^```[a-zA-Z]*\s*", "", cleaned)
        cleaned = re.sub(r"\s*```$", "", cleaned)
    return cleaned.strip()


def extract_json_object(text: str) -> dict[str, Any]:
    """Parse the first JSON object in a model response.

    Raises:
        ValueError: if no JSON object can be decoded.
    """
    cleaned = strip_code_fences(text)
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        start = cleaned.find("{")
        end = cleaned.rfind("}")
        if start == -1 or end <= start:
            raise ValueError("Response contains no JSON object") from None
        try:
            data = json.loads(cleaned[start : end + 1])
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in response: {e}") from e

    if not isinstance(data, dict):
        raise ValueError("Response JSON is not an object")
    return data


def verses_to_text(verses: list[dict[str, str]]) -> str:
    """Render sections back to bracketed text (the audio provider's prompt format)."""
    blocks = []
    counters: dict[str, int] = {}
    for verse in verses:
        section = verse.get("type", "verse")
        counters[section] = counters.get(section, 0) + 1
        label = section.replace("-", " ").title()
        if section == "verse":
            label = f"{label} {counters[section]}"
        blocks.append(f"[{label}]\n{verse.get('text', '').strip()}")
    return "\n\n".join(blocks)
