"""Font resolution with a per-language fallback chain."""

from __future__ import annotations

import logging
import os
from typing import Sequence, Tuple

from PIL import ImageFont

from domain.short_video import (
    DEFAULT_FONT_FILE,
    FONT_LOAD_CODE,
    NoFontAvailableError,
    language_capability,
)

LOGGER = logging.getLogger("render_shorts")
FONT_PROBE_SIZE = 32
SYSTEM_FALLBACK_FONTS = (
    "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
    "/usr/share/fonts/opentype/noto/NotoSansCJK-Regular.ttc",
    "/usr/share/fonts/noto-cjk/NotoSansCJK-Regular.ttc",
    "/usr/share/fonts/truetype/liberation/LiberationSans-Regular.ttf",
    "/System/Library/Fonts/Helvetica.ttc",
    "/Library/Fonts/Arial Unicode.ttf",
    "C:\\Windows\\Fonts\\arial.ttf",
)


def is_loadable_font(font_path: str) -> bool:
    """Return True when Pillow can open the font file."""
    try:
        ImageFont.truetype(
            font_path, size=FONT_PROBE_SIZE, layout_engine=ImageFont.Layout.BASIC
        )
    except Exception as exc:
        LOGGER.warning(
            "%s: skipped font %s (%s)", FONT_LOAD_CODE, font_path, str(exc).strip()
        )
        return False
    return True


class FontResolver:
    """Resolve a usable font file for a language; results are cached."""

    def __init__(
        self,
        fonts_dir: str,
        system_fonts: Sequence[str] = SYSTEM_FALLBACK_FONTS,
    ) -> None:
        self.fonts_dir = fonts_dir
        self.system_fonts = tuple(system_fonts)
        self._cache: dict[Tuple[str, str | None], str] = {}

    def candidates(self, language: str, explicit_path: str | None) -> Tuple[str, ...]:
        """Ordered candidate paths, without duplicates."""
        ordered: list[str] = []
        if explicit_path:
            ordered.append(explicit_path)
        ordered.append(os.path.join(self.fonts_dir, language_capability(language).font_file))
        ordered.append(os.path.join(self.fonts_dir, DEFAULT_FONT_FILE))
        ordered.extend(self.system_fonts)
        return tuple(dict.fromkeys(ordered))

    def resolve(self, language: str, explicit_path: str | None = None) -> str:
        """Return the first existing, loadable candidate."""
        cache_key = (language, explicit_path)
        cached_path = self._cache.get(cache_key)
        if cached_path is not None:
            return cached_path

        candidates = self.candidates(language, explicit_path)
        for candidate in candidates:
            if not os.path.isfile(candidate):
                continue
            if not is_loadable_font(candidate):
                continue
            if explicit_path and candidate != explicit_path:
                LOGGER.warning(
                    "render_shorts.font.fallback: %s unavailable, using %s",
                    explicit_path,
                    candidate,
                )
            self._cache[cache_key] = candidate
            return candidate
        raise NoFontAvailableError(language, candidates)
