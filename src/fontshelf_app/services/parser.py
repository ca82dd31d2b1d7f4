from __future__ import annotations

import io
from typing import Optional

from fontTools.ttLib import TTCollection, TTFont, TTLibError

from fontshelf_app.models.entities import FaceDescriptor

SUPPORTED_EXTENSIONS = frozenset({"ttf", "otf", "woff", "woff2", "ttc"})

_COLLECTION_TAG = b"ttcf"


class ParseError(RuntimeError):
    pass


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip().strip("\x00")
    return value or None


def _face_from_ttfont(tt: TTFont) -> FaceDescriptor:
    if "name" not in tt:
        raise ParseError("font has no 'name' table")
    names = tt["name"]

    family = _clean(names.getBestFamilyName())
    if not family:
        raise ParseError("font has no family name")
    subfamily = _clean(names.getBestSubFamilyName()) or "Regular"

    weight = 400
    italic = False
    stretch = None
    if "OS/2" in tt:
        os2 = tt["OS/2"]
        weight = int(getattr(os2, "usWeightClass", 400) or 400)
        italic = bool(getattr(os2, "fsSelection", 0) & 0x01)
        width = getattr(os2, "usWidthClass", None)
        stretch = str(width) if width else None
    if "post" in tt and getattr(tt["post"], "italicAngle", 0):
        italic = True

    return FaceDescriptor(
        family=family,
        subfamily=subfamily,
        weight=weight,
        italic=italic,
        postscript_name=_clean(names.getDebugName(6)),
        stretch=stretch,
        version=_clean(names.getDebugName(5)),
        full_name=_clean(names.getDebugName(4)) or _clean(names.getBestFullName()),
    )


def parse_font(data: bytes) -> list[FaceDescriptor]:
    """
    Read every face in a font container.

    Single-face files (TrueType, OpenType/CFF, WOFF, WOFF2) give one
    descriptor; a TrueType/OpenType collection gives one per member font.
    Anything fontTools cannot decode raises ParseError.
    """
    try:
        if data[:4] == _COLLECTION_TAG:
            collection = TTCollection(io.BytesIO(data), lazy=True)
            fonts = list(collection.fonts)
        else:
            fonts = [TTFont(io.BytesIO(data), lazy=True, recalcBBoxes=False, recalcTimestamp=False)]
        faces = [_face_from_ttfont(tt) for tt in fonts]
    except ParseError:
        raise
    except TTLibError as e:
        raise ParseError(f"cannot decode font: {e}") from e
    except Exception as e:
        # fontTools surfaces truncated/corrupt tables as assorted struct/index errors
        raise ParseError(f"cannot decode font: {e!r}") from e

    if not faces:
        raise ParseError("container holds no fonts")
    return faces