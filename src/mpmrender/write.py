from __future__ import annotations
import copy
import os
import re
from typing import Iterable, List, Optional, Tuple
from xml.etree import ElementTree as ET
import mido
from .timeline import RenderResult, Score, ScorePart, ScoreNote, DEFAULT_PPQ
from .util.xml import XML_ID, get_ns, local, children, fmt

MIDI_TPB = 480
MIDI_TEMPO = 500_000          # 120 BPM -> 1 ms = 0.96 ticks

# ---------- interne Helfer ----------

def _tag(ns: dict, name: str) -> str:
    return f"{{{ns['m']}}}{name}" if ns else name

def _first(elem, name: str):
    for c in children(elem):
        if local(c.tag) == name:
            return c
    return None

def _ensure(elem, ns: dict, name: str):
    c = _first(elem, name)
    if c is None:
        c = ET.SubElement(elem, _tag(ns, name))
    return c

def _score_field(n: ScoreNote, keys: Tuple[str, ...], value: float) -> Tuple[str, str]:
    """Originaltext behalten, solange der Wert unverändert ist (z.B. date="0" statt "0.0")."""
    for key in keys:
        raw = n.source.get(key)
        if raw is not None:
            return key, raw if float(raw) == value else fmt(float(value))
    return keys[0], fmt(float(value))

def note_attributes(n: ScoreNote) -> List[Tuple[str, str]]:
    """Attributreihenfolge: Partitur, unveränderte Fremdattribute, Performance."""
    out = [_score_field(n, ("date",), n.date), _score_field(n, ("duration",), n.duration),
           _score_field(n, ("midi.pitch", "pitch"), n.pitch), _score_field(n, ("velocity",), n.velocity)]
    if n.id:
        out.append((XML_ID, n.id))
    out += [(k, v) for k, v in n.attrs.items() if not k.endswith(".perf") and not k.startswith("milliseconds.")]
    out += [("date.perf", fmt(float(n.date_perf))), ("duration.perf", fmt(float(n.duration_perf))),
            ("velocity.perf", fmt(float(n.velocity_perf))),
            ("milliseconds.date", fmt(float(n.ms_date))), ("milliseconds.duration", fmt(float(n.ms_duration)))]
    out += list(n.ornament.items())
    if n.detune_cents is not None:
        out.append(("detuneCents", fmt(float(n.detune_cents))))
    if n.detune_hz is not None:
        out.append(("detuneHz", fmt(float(n.detune_hz))))
    return out

def _write_notes(score_el, ns: dict, notes: Iterable[ScoreNote]):
    for c in [c for c in children(score_el) if local(c.tag) == "note"]:
        score_el.remove(c)
    for n in notes:
        el = ET.SubElement(score_el, _tag(ns, "note"))
        for k, v in note_attributes(n):
            el.set(k, v)

def _write_controllers(dated, ns: dict, part: ScorePart):
    for map_name, events in part.controller_maps.items():
        old = _first(dated, map_name)
        if old is not None:
            dated.remove(old)
        m = ET.SubElement(dated, _tag(ns, map_name))
        for ev in events:
            ET.SubElement(m, _tag(ns, "position"), {
                "date": fmt(float(ev.date)), "value": str(int(ev.value)), "controller": ev.controller})

def _new_part_element(root, ns: dict, part: ScorePart):
    el = ET.SubElement(root, _tag(ns, "part"), {"name": part.name})
    if part.number is not None: el.set("number", str(part.number))
    if part.channel is not None: el.set("midi.channel", str(part.channel))
    if part.port is not None: el.set("midi.port", str(part.port))
    return el

def _rescale_time_signatures(root, ns: dict, score: Score):
    src = int(float(root.attrib.get("pulsesPerQuarter", DEFAULT_PPQ)))
    if src == score.ppq:
        return
    for ts in root.iter(_tag(ns, "timeSignature")):
        if "date" in ts.attrib:
            ts.set("date", fmt(float(ts.attrib["date"]) * score.ppq / src))

# ---------- öffentliche Writer-APIs ----------

def build_tree(result: RenderResult) -> ET.Element:
    """Gleiche Struktur wie die Eingabe-Score; Noten ersetzt, positionMap angehängt."""
    score = result.score
    if score.xml is not None:
        root = copy.deepcopy(score.xml)
    else:
        root = ET.Element("msm", {"title": score.title})
    ns = get_ns(root)
    _rescale_time_signatures(root, ns, score)
    root.set("pulsesPerQuarter", str(score.ppq))

    part_els = [c for c in children(root) if local(c.tag) == "part"]
    for i, part in enumerate(score.parts):
        pel = part_els[i] if i < len(part_els) else _new_part_element(root, ns, part)
        dated = _ensure(pel, ns, "dated")
        _write_notes(_ensure(dated, ns, "score"), ns, part.notes)
        _write_controllers(dated, ns, part)
    return root

def to_xml_string(result: RenderResult) -> str:
    root = build_tree(result)
    ET.indent(root)
    return ET.tostring(root, encoding="unicode")

def write_score(result: RenderResult, out_path: str):
    """
    Performance-Partitur als XML schreiben.
    date/duration stehen in Pulsen der Performance-PPQ; weicht sie von der Partitur ab, sind sie umgerechnet.
    """
    root = build_tree(result)
    ns = get_ns(root)
    if ns:
        ET.register_namespace("", ns["m"])
    ET.indent(root)
    os.makedirs(os.path.dirname(os.path.abspath(out_path)), exist_ok=True)
    ET.ElementTree(root).write(out_path, encoding="utf-8", xml_declaration=True)

def _ms_to_tick(ms: float, offset: float) -> int:
    return max(0, int(round((ms - offset) * MIDI_TPB * 1000.0 / MIDI_TEMPO)))

def _controller_number(name: str) -> Optional[int]:
    m = re.fullmatch(r"\s*(\d+)\s*", name or "")
    if m is None:
        return None
    n = int(m.group(1))
    return n if 0 <= n <= 127 else None

def _emit_track_events(mt: mido.MidiTrack, part: ScorePart, channel: int, curve, offset: float):
    """Note/CC-Events aus der ms-Zeitachse als delta-times in einen Track schreiben."""
    evs = []
    for n in part.notes:
        on = _ms_to_tick(n.ms_date, offset)
        off = max(on, _ms_to_tick(n.ms_date + n.ms_duration, offset))
        pitch = max(0, min(127, int(round(n.pitch))))
        evs.append((on, 1, ("on", pitch, int(n.velocity_perf))))
        evs.append((off, 0, ("off", pitch, 0)))       # Off zuerst bei gleichem Tick
    for events in part.controller_maps.values():
        for c in events:
            cc = _controller_number(c.controller)
            if cc is None:
                continue    # symbolische Controller haben kein MIDI-Gegenstück
            value = max(0, min(127, int(c.value)))
            evs.append((_ms_to_tick(curve.ms(c.date), offset), 2, ("cc", cc, value)))
    evs.sort(key=lambda x: (x[0], x[1]))

    last = 0
    for tick, _, payload in evs:
        delta = tick - last
        last = tick
        kind = payload[0]
        if kind == "on":
            mt.append(mido.Message("note_on", note=payload[1], velocity=payload[2], channel=channel, time=delta))
        elif kind == "off":
            mt.append(mido.Message("note_off", note=payload[1], velocity=0, channel=channel, time=delta))
        elif kind == "cc":
            mt.append(mido.Message("control_change", control=payload[1], value=payload[2],
                                   channel=channel, time=delta))

def write_midi(result: RenderResult, out_path: str):
    """
    Eine Datei mit Conductor-Track (festes Tempo 120) + einem Track je Part.
    Die Zeitachse ist die gerenderte ms-Zeit, nicht die symbolische.
    """
    score = result.score
    starts = [n.ms_date for p in score.parts for n in p.notes]
    offset = min(0.0, min(starts)) if starts else 0.0

    mid = mido.MidiFile(ticks_per_beat=MIDI_TPB)
    t_con = mido.MidiTrack()
    t_con.append(mido.MetaMessage("track_name", name="Conductor", time=0))
    t_con.append(mido.MetaMessage("set_tempo", tempo=MIDI_TEMPO, time=0))
    mid.tracks.append(t_con)

    for i, part in enumerate(score.parts):
        mt = mido.MidiTrack()
        mt.append(mido.MetaMessage("track_name", name=part.name or f"Part {i + 1}", time=0))
        channel = part.channel if part.channel is not None and 0 <= part.channel < 16 else i % 16
        _emit_track_events(mt, part, channel, result.tempo_curves[i], offset)
        mid.tracks.append(mt)

    mid.save(out_path)
