from __future__ import annotations
import math
from typing import Optional
from xml.etree import ElementTree as ET
from ..errors import StructuralInputError

XML_ID = "{http://www.w3.org/XML/1998/namespace}id"

def get_ns(root):
    return {"m": root.tag.split('}')[0].strip('{')} if '}' in root.tag else {}

def local(tag: str) -> str:
    return tag.split('}')[-1] if '}' in tag else tag

def children(elem):
    """Kind-Elemente in Dokumentreihenfolge (Kommentare etc. werden übersprungen)."""
    return [c for c in list(elem) if isinstance(c.tag, str)]

def xml_id(elem) -> Optional[str]:
    return elem.attrib.get(XML_ID) or elem.attrib.get("xml:id") or elem.attrib.get("id")

def _finite(elem, name: str, raw: str, v: float) -> float:
    if not math.isfinite(v):
        raise StructuralInputError(f"'{raw}' is not finite", local(elem.tag), name)
    return v

def num(elem, name: str, default: Optional[float] = None, required: bool = False,
        finite: bool = True) -> Optional[float]:
    """
    Numerisches Attribut lesen; fehlend -> default, nicht-numerisch -> StructuralInputError.
    NaN/inf nur mit finite=False (Kurvenform: degeneriertes Segment statt Fehler).
    """
    raw = elem.attrib.get(name)
    if raw is None or raw.strip() == "":
        if required:
            raise StructuralInputError("required attribute missing", local(elem.tag), name)
        return default
    try:
        v = float(raw)
    except ValueError:
        raise StructuralInputError(f"'{raw}' is not numeric", local(elem.tag), name) from None
    return _finite(elem, name, raw, v) if finite else v

def integer(elem, name: str, default: Optional[int] = None, required: bool = False) -> Optional[int]:
    v = num(elem, name, None, required)
    if v is None:
        return default
    if v != int(v):
        raise StructuralInputError(f"'{elem.attrib.get(name)}' is not an integer", local(elem.tag), name)
    return int(v)

def num_or_label(elem, name: str):
    """
    Zahl oder Style-Label (z.B. volume="forte", bpm="Allegro").
    Liefert float, str oder None.
    """
    raw = elem.attrib.get(name)
    if raw is None or raw.strip() == "":
        return None
    try:
        v = float(raw)
    except ValueError:
        return raw.strip()
    return _finite(elem, name, raw, v)

def flag(elem, name: str, default: bool = False) -> bool:
    raw = elem.attrib.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("true", "1", "yes")

def fmt(v) -> str:
    """Zahlen kompakt serialisieren (480.0 -> '480.0', 1/3 -> '0.333333333333')."""
    if isinstance(v, float):
        if math.isfinite(v) and v == int(v):
            return f"{v:.1f}"
        return f"{v:.12g}"
    return str(v)

def parse_root(source) -> ET.Element:
    """Pfad oder XML-String parsen."""
    try:
        if isinstance(source, str) and source.lstrip().startswith("<"):
            return ET.fromstring(source)
        return ET.parse(str(source)).getroot()
    except ET.ParseError as e:
        raise StructuralInputError(f"malformed XML: {e}") from e
