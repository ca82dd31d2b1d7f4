from __future__ import annotations

import io
import os
from pathlib import Path

from fontTools.fontBuilder import FontBuilder
from fontTools.pens.ttGlyphPen import TTGlyphPen
from fontTools.ttLib import TTCollection, TTFont


def make_font_bytes(
    family: str,
    style: str = "Regular",
    *,
    weight: int = 400,
    italic: bool = False,
    width: int = 5,
    version: str = "Version 1.000",
) -> bytes:
    """Build a minimal but valid TrueType font in memory."""
    fb = FontBuilder(1000, isTTF=True)
    fb.setupGlyphOrder([".notdef", "A"])
    fb.setupCharacterMap({0x41: "A"})

    pen = TTGlyphPen(None)
    pen.moveTo((100, 0))
    pen.lineTo((100, 700))
    pen.lineTo((500, 700))
    pen.lineTo((500, 0))
    pen.closePath()
    glyph = pen.glyph()
    fb.setupGlyf({".notdef": glyph, "A": glyph})
    fb.setupMaxp()

    fb.setupHorizontalMetrics({".notdef": (600, 100), "A": (600, 100)})
    fb.setupHorizontalHeader(ascent=800, descent=-200)
    ps_name = f"{family}-{style}".replace(" ", "")
    fb.setupNameTable(
        {
            "familyName": family,
            "styleName": style,
            "fullName": f"{family} {style}",
            "psName": ps_name,
            "version": version,
        }
    )
    fb.setupOS2(
        usWeightClass=weight,
        usWidthClass=width,
        fsSelection=0x01 if italic else 0x40,
    )
    fb.setupPost(italicAngle=-12 if italic else 0)

    buf = io.BytesIO()
    fb.save(buf)
    return buf.getvalue()


def make_collection_bytes(*members: tuple[str, str]) -> bytes:
    """A .ttc holding one face per (family, style) pair."""
    coll = TTCollection()
    coll.fonts = [TTFont(io.BytesIO(make_font_bytes(family, style))) for family, style in members]
    buf = io.BytesIO()
    coll.save(buf)
    return buf.getvalue()


def write_font(path: Path, data: bytes, mtime_ns: int | None = None) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    if mtime_ns is not None:
        os.utime(path, ns=(mtime_ns, mtime_ns))
    return path
