# pillow.py
# SPDX-License-Identifier: MIT
"""In-process tag extraction with Pillow.

A lighter backend than exiftool: it reads the primary EXIF IFD, the Exif
sub-IFD and the GPS IFD, and adds a few file-level tags named the way
exiftool names them so the same normalization rules apply to both.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import datetime
from numbers import Rational
from pathlib import Path
from typing import Any

from PIL import ExifTags, Image, UnidentifiedImageError

from ..core.errors import ConfigurationError
from ..core.log import get_logger
from .base import ExtractionResult

log = get_logger(__name__)

__all__ = ["PillowExtractor"]

_GPS_COORDS = {
    "GPSLatitude": "GPSLatitudeRef",
    "GPSLongitude": "GPSLongitudeRef",
}
_NEGATIVE_REFS = {"S", "W"}


def _rational_to_float(value: Any) -> float | None:
    denominator = getattr(value, "denominator", None)
    if denominator is not None and not denominator:
        return None
    try:
        return float(value)
    except (TypeError, ValueError, ZeroDivisionError):
        return None


def _convert(value: Any) -> Any:
    """Turn a Pillow tag value into a JSON-like scalar."""
    if isinstance(value, bytes):
        return f"(Binary data {len(value)} bytes)"
    if isinstance(value, str):
        return value.replace("\x00", "").strip()
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value
    if isinstance(value, (Rational, float)) or hasattr(value, "denominator"):
        return _rational_to_float(value)
    if isinstance(value, tuple):
        converted = [_convert(item) for item in value]
        return " ".join("" if item is None else str(item) for item in converted)
    return str(value)


def _dms_to_degrees(value: Any, ref: Any) -> float | None:
    if not isinstance(value, tuple) or len(value) != 3:
        return None
    parts = [_rational_to_float(part) for part in value]
    if any(part is None for part in parts):
        return None
    degrees = parts[0] + parts[1] / 60.0 + parts[2] / 3600.0  # type: ignore[operator]
    if isinstance(ref, bytes):
        ref = ref.decode("ascii", "ignore")
    if str(ref or "").strip().upper() in _NEGATIVE_REFS:
        degrees = -degrees
    return degrees


class PillowExtractor:
    """Read EXIF tags with Pillow, one file at a time within a batch."""

    name = "pillow"

    def __init__(self, *, include_gps: bool = True) -> None:
        self.include_gps = include_gps

    @classmethod
    def from_options(cls, options: Mapping[str, Any]) -> PillowExtractor:
        unknown = sorted(set(options) - {"include_gps"})
        if unknown:
            raise ConfigurationError(f"Unsupported pillow options: {', '.join(unknown)}")
        return cls(include_gps=bool(options.get("include_gps", True)))

    def probe(self) -> str:
        from PIL import __version__

        return __version__

    def _file_tags(self, path: Path) -> dict[str, Any]:
        st = path.stat()
        modified = datetime.fromtimestamp(st.st_mtime).astimezone()
        return {
            "FileName": path.name,
            "Directory": str(path.parent),
            "FileSize": st.st_size,
            "FileModifyDate": modified.strftime("%Y:%m:%d %H:%M:%S%z"),
        }

    def read(self, path: str) -> dict[str, Any]:
        """Return the raw tags of one image.

        Raises:
            OSError: If the file cannot be opened or is not an image.
        """
        p = Path(path)
        tags = self._file_tags(p)
        with Image.open(p) as img:
            tags["ImageWidth"] = img.width
            tags["ImageHeight"] = img.height
            mime = Image.MIME.get(img.format or "")
            if mime:
                tags["MIMEType"] = mime
            exif = img.getexif()
            for tag_id, value in exif.items():
                name = ExifTags.TAGS.get(tag_id)
                if name and name not in ("ExifOffset", "GPSInfo"):
                    tags[name] = _convert(value)
            for tag_id, value in exif.get_ifd(ExifTags.IFD.Exif).items():
                name = ExifTags.TAGS.get(tag_id)
                if name:
                    tags[name] = _convert(value)
            if self.include_gps:
                gps = exif.get_ifd(ExifTags.IFD.GPSInfo)
                gps_named = {ExifTags.GPSTAGS.get(k, str(k)): v for k, v in gps.items()}
                for name, value in gps_named.items():
                    if name in _GPS_COORDS:
                        degrees = _dms_to_degrees(value, gps_named.get(_GPS_COORDS[name]))
                        if degrees is not None:
                            tags[name] = degrees
                    else:
                        tags[name] = _convert(value)
        return {k: v for k, v in tags.items() if v is not None}

    def extract_batch(self, paths: Sequence[str]) -> list[ExtractionResult]:
        results: list[ExtractionResult] = []
        for path in paths:
            try:
                results.append(ExtractionResult(path=path, tags=self.read(path)))
            except (UnidentifiedImageError, OSError, ValueError) as exc:
                log.debug("Pillow could not read %s: %s", path, exc)
                results.append(ExtractionResult.failure(path, f"{type(exc).__name__}: {exc}"))
        return results

    def close(self) -> None:
        """Nothing to release."""
