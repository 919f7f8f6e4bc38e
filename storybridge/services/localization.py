"""Phrase catalog for text we generate on behalf of users"""
from typing import Any, Callable, Dict, List, Optional

from storybridge.config import settings


def _join_en(names: List[str]) -> str:
    if len(names) <= 1:
        return "".join(names)
    return ", ".join(names[:-1]) + " and " + names[-1]


def _count_en(count: int, singular: str, plural: str) -> Optional[str]:
    if count <= 0:
        return None
    if count == 1:
        return f"a {singular}" if singular[0] not in "aeiou" else f"an {singular}"
    return f"{count} {plural}"


def _posted_en(names, photos, videos, audios) -> str:
    items = [
        item
        for item in (
            _count_en(photos, "picture", "pictures"),
            _count_en(videos, "video", "videos"),
            _count_en(audios, "audio clip", "audio clips"),
        )
        if item
    ]
    return f"{_join_en(names)} posted {_join_en(items)}:"


def _join_de(names: List[str]) -> str:
    if len(names) <= 1:
        return "".join(names)
    return ", ".join(names[:-1]) + " und " + names[-1]


def _posted_de(names, photos, videos, audios) -> str:
    items = []
    if photos:
        items.append("ein Bild" if photos == 1 else f"{photos} Bilder")
    if videos:
        items.append("ein Video" if videos == 1 else f"{videos} Videos")
    if audios:
        items.append("eine Audioaufnahme" if audios == 1 else f"{audios} Audioaufnahmen")
    return f"{_join_de(names)} hat {_join_de(items)} gepostet:"


PHRASES: Dict[str, Dict[str, Callable[..., str]]] = {
    "en": {
        "issue-export-$names-wrote": lambda names: f"{_join_en(names)} wrote:",
        "issue-export-$names-posted-$photos-$videos-$audios": _posted_en,
    },
    "de": {
        "issue-export-$names-wrote": lambda names: f"{_join_de(names)} schrieb:",
        "issue-export-$names-posted-$photos-$videos-$audios": _posted_de,
    },
}


def get_default_language() -> str:
    return settings.default_language or "en"


def translate(phrase: str, *args: Any, language: Optional[str] = None) -> str:
    """Render ``phrase``; unknown languages fall back to English, unknown phrases to the key."""
    catalog = PHRASES.get((language or get_default_language()).split("-")[0], PHRASES["en"])
    entry = catalog.get(phrase) or PHRASES["en"].get(phrase)
    if entry is None:
        return phrase
    return entry(*args)


def get_user_name(user, language: Optional[str] = None) -> str:
    """Display name of a user; ``details.name`` may be a string or a per-language dict."""
    name = (user.details or {}).get("name")
    if isinstance(name, dict):
        language = language or get_default_language()
        name = name.get(language) or next((v for v in name.values() if v), None)
    return name or user.username or f"user {user.id}"
