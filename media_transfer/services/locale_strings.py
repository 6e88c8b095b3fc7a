from __future__ import annotations

DEFAULT_LOCALE = "en"

_MESSAGES: dict[str, dict[str, str]] = {
    "en": {"untitled_container": "Untitled album"},
    "de": {"untitled_container": "Unbenanntes Album"},
    "es": {"untitled_container": "Álbum sin título"},
    "fr": {"untitled_container": "Album sans titre"},
    "it": {"untitled_container": "Album senza titolo"},
}


def _candidates(locale: str | None) -> list[str]:
    if not locale:
        return [DEFAULT_LOCALE]
    normalized = locale.replace("_", "-").lower()
    language = normalized.split("-", 1)[0]
    return [normalized, language, DEFAULT_LOCALE]


def get_string(locale: str | None, key: str) -> str:
    for candidate in _candidates(locale):
        messages = _MESSAGES.get(candidate)
        if messages and key in messages:
            return messages[key]
    raise KeyError(key)
