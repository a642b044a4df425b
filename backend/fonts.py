"""
Web font loading for canvas scripts.

Faces listed in the config's ``fonts`` entry are fetched from the Fontsource
CDN, converted to plain TrueType with fontTools (Pillow's FreeType build may
lack WOFF2 support) and cached in the workspace ``fonts/`` directory. A
failed face is logged and skipped; text then falls back to the default font.

URL format:
  https://cdn.jsdelivr.net/fontsource/fonts/{name}@latest/{subset}-{weight}-normal.{format}
"""

import asyncio
import io
import logging
import re
import urllib.request
from pathlib import Path
from typing import Callable, Iterable

from fontTools.ttLib import TTFont

from canvas_config import FontSpec
from config import DEFAULT_FONT_CDN

logger = logging.getLogger(__name__)

Fetcher = Callable[[str], bytes]

_FETCH_TIMEOUT = 30


def normalize_font_name(font_name: str) -> str:
    """Lower-case the name and replace whitespace runs with hyphens."""
    return re.sub(r"\s+", "-", font_name.strip().lower())


def font_url(spec: FontSpec, weight: int, template: str = DEFAULT_FONT_CDN) -> str:
    return template.format(
        name=normalize_font_name(spec.font_name),
        subset=spec.subset,
        weight=weight,
        format=spec.format,
    )


def http_get(url: str) -> bytes:
    req = urllib.request.Request(url, headers={"User-Agent": "canvas-studio"})
    with urllib.request.urlopen(req, timeout=_FETCH_TIMEOUT) as resp:
        return resp.read()


def convert_to_ttf(data: bytes, dest: Path) -> None:
    """Decompress a WOFF/WOFF2 (or copy a TTF/OTF) font into ``dest``."""
    font = TTFont(io.BytesIO(data))
    font.flavor = None
    dest.parent.mkdir(parents=True, exist_ok=True)
    font.save(str(dest))


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

class FontRegistry:
    """Maps (family, weight) to a local font file."""

    def __init__(self):
        self._faces: dict[str, dict[int, Path]] = {}

    def add(self, family: str, weight: int, path: Path) -> None:
        self._faces.setdefault(family.lower(), {})[weight] = path

    def has(self, family: str, weight: int) -> bool:
        return weight in self._faces.get(family.lower(), {})

    def families(self) -> list[str]:
        return sorted(self._faces)

    def resolve(self, families: Iterable[str], weight: int) -> Path | None:
        """Return the file for the first known family, at the nearest weight."""
        for family in families:
            faces = self._faces.get(family.lower())
            if not faces:
                continue
            nearest = min(faces, key=lambda w: (abs(w - weight), w))
            return faces[nearest]
        return None


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

class FontLoader:
    def __init__(
        self,
        registry: FontRegistry,
        cache_dir: Path,
        url_template: str = DEFAULT_FONT_CDN,
        fetch: Fetcher = http_get,
    ):
        self.registry = registry
        self.cache_dir = Path(cache_dir)
        self.url_template = url_template
        self.fetch = fetch
        self._attempted: set[tuple[str, int, str]] = set()

    def _cache_path(self, spec: FontSpec, weight: int) -> Path:
        return self.cache_dir / f"{normalize_font_name(spec.font_name)}-{spec.subset}-{weight}.ttf"

    def missing(self, fonts: Iterable[FontSpec]) -> list[tuple[FontSpec, int]]:
        """Faces that have not been attempted yet, in declaration order."""
        out = []
        for spec in fonts:
            for weight in spec.weights:
                key = (spec.font_name.lower(), weight, spec.subset)
                if key not in self._attempted:
                    out.append((spec, weight))
        return out

    async def load(self, fonts: Iterable[FontSpec]) -> int:
        """Load every face not tried before. Returns how many became available."""
        faces = self.missing(fonts)
        if not faces:
            return 0
        for spec, weight in faces:
            self._attempted.add((spec.font_name.lower(), weight, spec.subset))

        results = await asyncio.gather(
            *(self._load_face(spec, weight) for spec, weight in faces),
            return_exceptions=True,
        )
        loaded = 0
        for (spec, weight), result in zip(faces, results):
            if isinstance(result, BaseException):
                logger.warning("Font %s (weight %d) failed: %s", spec.font_name, weight, result)
            elif result:
                loaded += 1
        return loaded

    async def _load_face(self, spec: FontSpec, weight: int) -> bool:
        dest = self._cache_path(spec, weight)
        if not dest.exists():
            url = font_url(spec, weight, self.url_template)
            try:
                data = await asyncio.to_thread(self.fetch, url)
                await asyncio.to_thread(convert_to_ttf, data, dest)
            except Exception as e:
                logger.warning("Could not load font %s (weight %d) from %s: %s",
                               spec.font_name, weight, url, e)
                return False
            logger.info("Downloaded font %s (weight %d)", spec.font_name, weight)

        self.registry.add(spec.font_name, weight, dest)
        return True
