"""Named color palettes for the page."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class Theme(StrEnum):
    LIGHT = "light"
    DARK = "dark"
    FOREST = "forest"

    @property
    def display_name(self) -> str:
        return self.value.capitalize()


@dataclass(frozen=True)
class Palette:
    """CSS custom properties applied to the page root."""

    background: str
    surface: str
    text: str
    muted: str
    accent: str
    accent_text: str
    border: str

    def css_variables(self) -> dict[str, str]:
        return {
            "--bg": self.background,
            "--surface": self.surface,
            "--text": self.text,
            "--muted": self.muted,
            "--accent": self.accent,
            "--accent-text": self.accent_text,
            "--border": self.border,
        }


PALETTES: dict[Theme, Palette] = {
    Theme.LIGHT: Palette(
        background="#f5f7fa",
        surface="#ffffff",
        text="#1f2933",
        muted="#616e7c",
        accent="#3b82f6",
        accent_text="#ffffff",
        border="#d9e2ec",
    ),
    Theme.DARK: Palette(
        background="#0b0e14",
        surface="#111827",
        text="#e5e7eb",
        muted="#9ca3af",
        accent="#4f46e5",
        accent_text="#ffffff",
        border="#1f2937",
    ),
    Theme.FOREST: Palette(
        background="#1b2e1f",
        surface="#24402a",
        text="#e8f5e9",
        muted="#a5c9a9",
        accent="#66bb6a",
        accent_text="#0f1f12",
        border="#2f5236",
    ),
}


def parse_theme(name: str) -> Theme:
    """Return the theme called ``name``, raising ValueError for unknown names."""
    try:
        return Theme(name.lower())
    except ValueError:
        choices = ", ".join(t.value for t in Theme)
        raise ValueError(f"Unknown theme '{name}' (choose from {choices})") from None
