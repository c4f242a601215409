# src/mpmrender/performance.py
"""
MPM-artiges Performance-Dokument lesen.

<mpm>
  <performance name="..." pulsesPerQuarter="720">
    <global>
      <header> dynamicsStyles, tempoStyles, articulationStyles, ... </header>
      <dated> dynamicsMap, tempoMap, articulationMap, ... </dated>
    </global>
    <part name="..." number="1" midi.channel="0" midi.port="0"> header + dated </part>
  </performance>
</mpm>
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional
from .errors import StructuralInputError, UnknownPerformanceError
from .maps import (
    InstructionMap, StyleSwitch, ARTICULATION_MODIFIERS, IMPRECISION_DOMAINS, IMPRECISION_MAP,
    DynamicsInstruction, TempoInstruction, AccentuationInstruction, ArticulationInstruction,
    OrnamentInstruction, MovementInstruction, RubatoInstruction, AsynchronyInstruction,
    DistributionInstruction,
    DYNAMICS_MAP, TEMPO_MAP, METRICAL_ACCENTUATION_MAP, ARTICULATION_MAP, ORNAMENTATION_MAP,
    MOVEMENT_MAP, RUBATO_MAP, ASYNCHRONY_MAP,
)
from .styles import (
    StyleTable, StyleDef, DynamicsDef, TempoDef, ArticulationDef, AccentuationPatternDef,
    OrnamentDef, OrnamentEvent, RubatoDef,
    DYNAMICS_STYLES, TEMPO_STYLES, ARTICULATION_STYLES, METRICAL_ACCENTUATION_STYLES,
    ORNAMENTATION_STYLES, RUBATO_STYLES,
)
from .util.xml import local, children, xml_id, num, integer, num_or_label, flag, parse_root

STYLE_SWITCH_TAGS = ("style", "styleSwitch")

DISTRIBUTION_PARAMS = (
    "limit.lower", "limit.upper", "clip.lower", "clip.upper", "mode",
    "deviation.standard", "stepWidth.max", "degreeOfCorrelation",
)

@dataclass
class Section:
    """global- oder part-Abschnitt: Stil-Kataloge (header) + Maps (dated)."""
    styles: StyleTable = field(default_factory=StyleTable)
    maps: Dict[str, InstructionMap] = field(default_factory=dict)

@dataclass
class PerformancePart(Section):
    name: Optional[str] = None
    number: Optional[int] = None
    channel: Optional[int] = None
    port: Optional[int] = None

    def label(self) -> str:
        return self.name or (f"#{self.number}" if self.number is not None else f"ch{self.channel}/port{self.port}")

@dataclass
class Performance:
    name: str
    ppq: Optional[int] = None           # None -> PPQ der Partitur
    global_: Section = field(default_factory=Section)
    parts: List[PerformancePart] = field(default_factory=list)

# ---------- Header ----------

def _modifiers(el) -> Dict[str, float]:
    out = {}
    for key in ARTICULATION_MODIFIERS:
        v = num(el, key)
        if v is not None:
            out[key] = v
    return out

def _required_name(el) -> str:
    name = el.attrib.get("name")
    if not name:
        raise StructuralInputError("required attribute missing", local(el.tag), "name")
    return name

def _parse_def(catalog: str, el):
    tag = local(el.tag)
    name = _required_name(el)
    if catalog == DYNAMICS_STYLES and tag == "dynamicsDef":
        return DynamicsDef(name, num(el, "volume", required=True))
    if catalog == TEMPO_STYLES and tag == "tempoDef":
        return TempoDef(name, num(el, "value", required=True))
    if catalog == ARTICULATION_STYLES and tag == "articulationDef":
        return ArticulationDef(name, _modifiers(el))
    if catalog == METRICAL_ACCENTUATION_STYLES and tag == "accentuationPatternDef":
        accents = [(num(a, "beat", required=True), num(a, "value", required=True))
                   for a in children(el) if local(a.tag) == "accentuation"]
        accents.sort(key=lambda a: a[0])
        return AccentuationPatternDef(name, num(el, "length", required=True), accents)
    if catalog == ORNAMENTATION_STYLES and tag == "ornamentDef":
        events = [OrnamentEvent(date_offset=num(n, "date.offset", 0.0),
                                duration=num(n, "duration", required=True),
                                velocity=num(n, "velocity", 1.0),
                                pitch_offset=num(n, "pitch.offset", 0.0))
                  for n in children(el) if local(n.tag) == "note"]
        return OrnamentDef(name, events, flag(el, "retainHostNote"), num(el, "hostDelay", 0.0))
    if catalog == RUBATO_STYLES and tag == "rubatoDef":
        return RubatoDef(name, num(el, "frameLength", required=True), num(el, "intensity", 1.0),
                         num(el, "lateStart", 0.0), num(el, "earlyEnd", 1.0))
    return None

def parse_header(header) -> StyleTable:
    table = StyleTable()
    if header is None:
        return table
    for cat_el in children(header):
        catalog = local(cat_el.tag)
        for sd in children(cat_el):
            if local(sd.tag) != "styleDef":
                continue
            style = StyleDef(_required_name(sd))
            for d in children(sd):
                definition = _parse_def(catalog, d)
                if definition is not None:
                    style.defs[definition.name] = definition
            table.add(catalog, style)
    return table

# ---------- Instructions ----------

def _note_ids(el) -> List[str]:
    ids = (el.attrib.get("noteIds") or "").split()
    if el.attrib.get("noteid"):
        ids.append(el.attrib["noteid"])
    return [i.lstrip("#") for i in ids]

def _label(el, name: str):
    v = num_or_label(el, name)
    if v is None:
        raise StructuralInputError("required attribute missing", local(el.tag), name)
    return v

def _dynamics(el):
    return DynamicsInstruction(
        date=num(el, "date", required=True), volume=_label(el, "volume"),
        transition_to=num_or_label(el, "transition.to"),
        curvature=num(el, "curvature", 0.0, finite=False),
        protraction=num(el, "protraction", 0.0, finite=False),
        sub_note_dynamics=flag(el, "subNoteDynamics"), id=xml_id(el))

def _tempo(el):
    return TempoInstruction(
        date=num(el, "date", required=True), bpm=_label(el, "bpm"),
        beat_length=num(el, "beatLength", 0.25),
        transition_to=num_or_label(el, "transition.to"),
        mean_tempo_at=num(el, "meanTempoAt"),
        curvature=num(el, "curvature", 0.0, finite=False),
        protraction=num(el, "protraction", 0.0, finite=False), id=xml_id(el))

def _accentuation(el):
    name = el.attrib.get("name.ref")
    if not name:
        raise StructuralInputError("required attribute missing", local(el.tag), "name.ref")
    return AccentuationInstruction(
        date=num(el, "date", required=True), pattern=name, scale=num(el, "scale", 1.0),
        loop=flag(el, "loop", True), stick_to_measures=flag(el, "stickToMeasures", True), id=xml_id(el))

def _articulation(el):
    return ArticulationInstruction(
        date=num(el, "date", required=True), name_ref=el.attrib.get("name.ref"),
        modifiers=_modifiers(el), note_ids=_note_ids(el), id=xml_id(el))

def _ornament(el):
    name = el.attrib.get("name.ref")
    if not name:
        raise StructuralInputError("required attribute missing", local(el.tag), "name.ref")
    return OrnamentInstruction(
        date=num(el, "date", required=True), name_ref=name, scale=num(el, "scale", 1.0),
        note_ids=_note_ids(el), id=xml_id(el))

def _movement(el):
    controller = el.attrib.get("controller")
    if not controller:
        raise StructuralInputError("required attribute missing", local(el.tag), "controller")
    return MovementInstruction(
        date=num(el, "date", required=True), controller=controller.strip(),
        position=num(el, "position"), transition_to=num(el, "transition.to"),
        curvature=num(el, "curvature", 0.0, finite=False),
        protraction=num(el, "protraction", 0.0, finite=False), id=xml_id(el))

def _rubato(el):
    return RubatoInstruction(
        date=num(el, "date", required=True), name_ref=el.attrib.get("name.ref"),
        frame_length=num(el, "frameLength"), intensity=num(el, "intensity", 1.0),
        late_start=num(el, "lateStart", 0.0), early_end=num(el, "earlyEnd", 1.0),
        loop=flag(el, "loop"), id=xml_id(el))

def _asynchrony(el):
    return AsynchronyInstruction(
        date=num(el, "date", required=True),
        offset_ms=num(el, "milliseconds.offset", required=True), id=xml_id(el))

def _distribution(el):
    params = {}
    for key in DISTRIBUTION_PARAMS:
        v = num(el, key)
        if v is not None:
            params[key] = v
    values = []
    if local(el.tag) == "distribution.list":
        values = [num(m, "value", required=True) for m in children(el) if local(m.tag) == "measurement"]
    return DistributionInstruction(
        date=num(el, "date", required=True), type=local(el.tag), params=params, values=values,
        seed=integer(el, "seed"), id=xml_id(el))

# Map-Tag -> (Instruction-Tag, Parser)
MAP_PARSERS: Dict[str, tuple] = {
    DYNAMICS_MAP: ("dynamics", _dynamics),
    TEMPO_MAP: ("tempo", _tempo),
    METRICAL_ACCENTUATION_MAP: ("accentuationPattern", _accentuation),
    ARTICULATION_MAP: ("articulation", _articulation),
    ORNAMENTATION_MAP: ("ornament", _ornament),
    MOVEMENT_MAP: ("movement", _movement),
    RUBATO_MAP: ("rubato", _rubato),
    ASYNCHRONY_MAP: ("asynchrony", _asynchrony),
}

def _parser_for(map_tag: str, child_tag: str) -> Optional[Callable]:
    if map_tag.startswith(IMPRECISION_MAP):
        return _distribution if child_tag.startswith("distribution.") else None
    entry = MAP_PARSERS.get(map_tag)
    if entry is None or entry[0] != child_tag:
        return None
    return entry[1]

def parse_map(map_el) -> InstructionMap:
    kind = local(map_el.tag)
    attrs = {k: v for k, v in map_el.attrib.items() if k == "detuneUnit"}
    imap = InstructionMap(kind, **attrs)
    for el in children(map_el):
        tag = local(el.tag)
        if tag in STYLE_SWITCH_TAGS:
            name = el.attrib.get("name.ref")
            if not name:
                raise StructuralInputError("required attribute missing", tag, "name.ref")
            imap.insert(StyleSwitch(num(el, "date", required=True), name,
                                    el.attrib.get("defaultArticulation")))
            continue
        parse = _parser_for(kind, tag)
        if parse is not None:
            imap.insert(parse(el))
        # andere Geschwister (Kommentare, Includes, ...) werden übersprungen
    return imap

def _known_map(tag: str) -> bool:
    if tag.startswith(IMPRECISION_MAP):
        return tag[len(IMPRECISION_MAP) + 1:] in IMPRECISION_DOMAINS
    return tag in MAP_PARSERS

def parse_section(el, section: Section):
    for c in children(el):
        tag = local(c.tag)
        if tag == "header":
            section.styles = parse_header(c)
        elif tag == "dated":
            for m in children(c):
                if _known_map(local(m.tag)):
                    section.maps[local(m.tag)] = parse_map(m)
    return section

# ---------- Dokument ----------

def parse_performance(el) -> Performance:
    name = el.attrib.get("name") or "performance"
    perf = Performance(name=name, ppq=integer(el, "pulsesPerQuarter"))
    for c in children(el):
        tag = local(c.tag)
        if tag == "global":
            parse_section(c, perf.global_)
        elif tag == "part":
            part = PerformancePart(
                name=c.attrib.get("name"), number=integer(c, "number"),
                channel=integer(c, "midi.channel"), port=integer(c, "midi.port"))
            perf.parts.append(parse_section(c, part))
    return perf

def read_performances(source) -> List[Performance]:
    """Alle <performance>-Einträge eines MPM-Dokuments (Pfad oder XML-String)."""
    root = parse_root(source)
    tag = local(root.tag)
    if tag == "performance":
        return [parse_performance(root)]
    if tag != "mpm":
        raise StructuralInputError(f"unexpected root element <{tag}>, expected <mpm>")
    return [parse_performance(p) for p in children(root) if local(p.tag) == "performance"]

def select_performance(perfs: List[Performance], name: Optional[str] = None) -> Performance:
    """Performance per Name; ohne Name die erste."""
    if not perfs:
        raise UnknownPerformanceError("document contains no performance")
    if name is None:
        return perfs[0]
    for p in perfs:
        if p.name == name:
            return p
    known = ", ".join(p.name for p in perfs)
    raise UnknownPerformanceError(f"performance '{name}' not found (available: {known})")
