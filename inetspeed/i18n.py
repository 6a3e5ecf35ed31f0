"""Output language selection.

The language is an explicit value handed to whoever renders text; there is
no process-wide "current language".
"""

from __future__ import annotations

import os
from dataclasses import dataclass

LANG_EN = "en"
LANG_ZH = "zh"

_ENV_KEYS = ("LC_ALL", "LC_MESSAGES", "LANGUAGE", "LANG")


def normalize(lang: str) -> str:
    """Map any language tag to ``zh`` or ``en``."""
    if lang.strip().lower().startswith(LANG_ZH):
        return LANG_ZH
    return LANG_EN


def detect_from_env() -> str:
    """Pick the language from SPEEDTEST_LANG, then the usual locale variables."""
    explicit = os.environ.get("SPEEDTEST_LANG", "").strip()
    if explicit:
        return normalize(explicit)
    for key in _ENV_KEYS:
        if os.environ.get(key, "").strip().lower().startswith(LANG_ZH):
            return LANG_ZH
    return LANG_EN


def resolve(override: str | None = None) -> str:
    if override and override.strip():
        return normalize(override)
    return detect_from_env()


@dataclass(frozen=True)
class Locale:
    """Selects between the English and Chinese variant of a message."""

    lang: str = LANG_EN

    @property
    def is_zh(self) -> bool:
        return self.lang == LANG_ZH

    def text(self, en: str, zh: str) -> str:
        return zh if self.is_zh else en


ENGLISH = Locale(LANG_EN)
