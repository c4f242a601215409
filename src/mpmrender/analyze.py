# src/mpmrender/analyze.py
from __future__ import annotations
from typing import Dict, List, Optional
from .config import load_config
from .errors import StructuralInputError
from .timeline import Score, ScorePart, ScoreNote, TimeSignature, DEFAULT_PPQ
from .util.xml import (
    XML_ID, local, children, xml_id, num, integer, parse_root,
)

# Attribute, die in ScoreNote-Feldern landen; alles andere bleibt in attrs
NOTE_FIELDS = {"date", "duration", "midi.pitch", "pitch", "velocity", XML_ID, "xml:id", "id"}
SOURCE_FIELDS = ("date", "duration", "midi.pitch", "pitch", "velocity")

def _first(elem, tag: str):
    for c in children(elem):
        if local(c.tag) == tag:
            return c
    return None

def _dated(elem):
    return _first(elem, "dated") if elem is not None else None

def read_time_signatures(dated) -> List[TimeSignature]:
    """<timeSignatureMap><timeSignature date numerator denominator/> ..."""
    out: List[TimeSignature] = []
    tsm = _first(dated, "timeSignatureMap") if dated is not None else None
    if tsm is None:
        return out
    for ts in children(tsm):
        if local(ts.tag) != "timeSignature":
            continue
        num_ = integer(ts, "numerator", required=True)
        den = integer(ts, "denominator", required=True)
        if num_ <= 0 or den <= 0:
            raise StructuralInputError("time signature must be positive", "timeSignature",
                                       "numerator" if num_ <= 0 else "denominator")
        out.append(TimeSignature(num(ts, "date", required=True), num_, den))
    out.sort(key=lambda t: t.date)
    return out

def read_note(el, default_velocity: float) -> ScoreNote:
    pitch = num(el, "midi.pitch")
    if pitch is None:
        pitch = num(el, "pitch", required=True)
    duration = num(el, "duration", required=True)
    if duration < 0:
        raise StructuralInputError("negative duration", "note", "duration")
    return ScoreNote(
        date=num(el, "date", required=True),
        duration=duration,
        pitch=pitch,
        velocity=num(el, "velocity", default_velocity),
        id=xml_id(el),
        attrs={k: v for k, v in el.attrib.items() if k not in NOTE_FIELDS},
        source={k: el.attrib[k] for k in SOURCE_FIELDS if k in el.attrib},
    )

def read_part(el, default_velocity: float) -> ScorePart:
    part = ScorePart(
        name=el.attrib.get("name") or "",
        number=integer(el, "number"),
        channel=integer(el, "midi.channel"),
        port=integer(el, "midi.port"),
        xml=el,
    )
    dated = _dated(el)
    if dated is not None:
        part.time_signatures = read_time_signatures(dated)
        sc = _first(dated, "score")
        if sc is not None:
            part.notes = [read_note(n, default_velocity) for n in children(sc) if local(n.tag) == "note"]
    part.sort_notes()
    return part

def read_score(source, cfg: Optional[Dict] = None) -> Score:
    """
    MSM-artiges Partitur-Dokument (Pfad oder XML-String) einlesen.
    Zeiten bleiben in Pulsen der Partitur (pulsesPerQuarter).
    """
    cfg = cfg if cfg is not None else load_config()
    default_velocity = float((cfg.get("score", {}) or {}).get("default_velocity", 100))

    root = parse_root(source)
    if local(root.tag) != "msm":
        raise StructuralInputError(f"unexpected root element <{local(root.tag)}>, expected <msm>")

    ppq = integer(root, "pulsesPerQuarter", DEFAULT_PPQ)
    if ppq <= 0:
        raise StructuralInputError("must be positive", "msm", "pulsesPerQuarter")

    score = Score(title=root.attrib.get("title", ""), ppq=ppq, xml=root)
    score.time_signatures = read_time_signatures(_dated(_first(root, "global")))
    score.parts = [read_part(p, default_velocity) for p in children(root) if local(p.tag) == "part"]
    return score
