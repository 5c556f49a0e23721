"""
Text extraction helpers.

Pull a structured JSON answer out of free-form model output, and pull an
embedded rating out of review or excerpt text.
"""

import json
import re
from dataclasses import dataclass
from typing import Optional

_STAR_PHRASE = re.compile(
    r"(\d(?:\.\d)?)\s*(?:out\s+of\s*|/\s*)([45])\s*stars?\b", re.I
)
_UNICODE_RUN = re.compile(r"([★⭐]+)(☆*)")

# Letter grades only in explicit forms; a bare capital letter is usually an
# initial ("Jonathan A. Abrams") or an article.
_STRICT_GRADE_PATTERNS = [
    re.compile(r"\b(?i:grade:\s*|rating[:\s]+)([A-D][+-]?|F)(?![\w+-])"),
    re.compile(r"[.!?]\s+([A-D][+-]?|F)\s*$"),
    re.compile(r"\b(?i:review:\s*)([A-D][+-]?|F)(?![\w+-])"),
]


def extract_json(text: str) -> str:
    """Extract JSON from model response, handling fenced blocks and prose wrapping."""
    cleaned = (text or "").strip()

    # Handle ```json fenced blocks
    if cleaned.startswith("```"):
        lines = cleaned.split("\n")[1:]
        json_lines = []
        for line in lines:
            if line.strip() == "```":
                break
            json_lines.append(line)
        cleaned = "\n".join(json_lines).strip()

    if cleaned.startswith("{") or cleaned.startswith("["):
        return cleaned

    # Find a JSON object embedded in prose by tracking brace depth
    start = cleaned.find("{")
    if start != -1:
        depth = 0
        for i in range(start, len(cleaned)):
            if cleaned[i] == "{":
                depth += 1
            elif cleaned[i] == "}":
                depth -= 1
                if depth == 0:
                    return cleaned[start : i + 1]
        return cleaned[start:]

    return ""


def parse_json_object(text: str) -> dict:
    """
    Parse the JSON object embedded in a model response.

    Raises:
        json.JSONDecodeError: If no valid JSON is present
        ValueError: If the JSON is not an object
    """
    data = json.loads(extract_json(text))
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
    return data


@dataclass(frozen=True)
class ExtractedRating:
    raw: str  # Normalizer-ready form, e.g. "3.5/5" or "B+"
    kind: str  # "stars", "unicode-stars", or "letter-grade"


def extract_rating_from_text(
    text: Optional[str],
    allow_letter_grades: bool = False
) -> Optional[ExtractedRating]:
    """
    High-precision search for a rating embedded in prose.

    Star phrases ("3.5 out of 5 stars", "4/5 stars") are tried first, then
    runs of unicode stars with 4-5 symbols in total. Letter grades are only
    considered when allowed, and only in explicit forms such as "Grade: B+".
    """
    if not text:
        return None

    match = _STAR_PHRASE.search(text)
    if match:
        return ExtractedRating(raw=f"{match.group(1)}/{match.group(2)}", kind="stars")

    match = _UNICODE_RUN.search(text)
    if match:
        filled = len(match.group(1))
        total = filled + len(match.group(2))
        if 4 <= total <= 5:
            return ExtractedRating(raw=f"{filled}/{total}", kind="unicode-stars")

    if not allow_letter_grades:
        return None

    for pattern in _STRICT_GRADE_PATTERNS:
        match = pattern.search(text)
        if match:
            return ExtractedRating(raw=match.group(1).upper(), kind="letter-grade")

    return None
