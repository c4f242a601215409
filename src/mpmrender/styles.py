from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

DYNAMICS_STYLES = "dynamicsStyles"
TEMPO_STYLES = "tempoStyles"
ARTICULATION_STYLES = "articulationStyles"
METRICAL_ACCENTUATION_STYLES = "metricalAccentuationStyles"
ORNAMENTATION_STYLES = "ornamentationStyles"
RUBATO_STYLES = "rubatoStyles"

CATALOGS = (DYNAMICS_STYLES, TEMPO_STYLES, ARTICULATION_STYLES,
            METRICAL_ACCENTUATION_STYLES, ORNAMENTATION_STYLES, RUBATO_STYLES)

# --- Definitionen ---

@dataclass
class DynamicsDef:
    name: str
    volume: float

@dataclass
class TempoDef:
    name: str
    value: float

@dataclass
class ArticulationDef:
    name: str
    modifiers: Dict[str, float] = field(default_factory=dict)

@dataclass
class AccentuationPatternDef:
    name: str
    length: float                                              # in Zählzeiten
    accents: List[Tuple[float, float]] = field(default_factory=list)   # (beat, value), beat 1-basiert

@dataclass
class OrnamentEvent:
    date_offset: float      # Anteil der Host-Dauer
    duration: float         # Anteil der Host-Dauer
    velocity: float = 1.0   # Faktor auf velocity.perf des Hosts
    pitch_offset: float = 0.0

@dataclass
class OrnamentDef:
    name: str
    events: List[OrnamentEvent] = field(default_factory=list)
    retain_host: bool = False
    host_delay: float = 0.0   # Anteil der Host-Dauer, um den der Host verzögert wird

@dataclass
class RubatoDef:
    name: str
    frame_length: float
    intensity: float = 1.0
    late_start: float = 0.0
    early_end: float = 1.0

@dataclass
class StyleDef:
    name: str
    defs: Dict[str, object] = field(default_factory=dict)

class StyleTable:
    """
    Stil-Kataloge einer Performance: catalog -> styleDef-Name -> StyleDef.
    Nach dem Aufbau nur noch lesend benutzt.
    """

    def __init__(self):
        self.catalogs: Dict[str, Dict[str, StyleDef]] = {c: {} for c in CATALOGS}

    def add(self, catalog: str, style: StyleDef):
        self.catalogs.setdefault(catalog, {})[style.name] = style

    def style(self, catalog: str, style_name: Optional[str]) -> Optional[StyleDef]:
        if style_name is None:
            return None
        return self.catalogs.get(catalog, {}).get(style_name)

    def resolve(self, catalog: str, style_name: Optional[str], def_name: str):
        """Definition im aktiven Style; None, wenn Style oder Definition fehlt."""
        st = self.style(catalog, style_name)
        if st is None:
            return None
        return st.defs.get(def_name)

    def number(self, catalog: str, style_name: Optional[str], label, attr: str) -> Optional[float]:
        """Zahl direkt durchreichen, Label über die Definition auflösen (volume, value)."""
        if label is None or isinstance(label, (int, float)):
            return label
        d = self.resolve(catalog, style_name, label)
        return None if d is None else float(getattr(d, attr))

    def scoped(self, local: Optional["StyleTable"]) -> "StyleTable":
        """Part-Header überschreibt gleichnamige styleDefs des globalen Headers."""
        if local is None:
            return self
        out = StyleTable()
        for catalog, styles in self.catalogs.items():
            out.catalogs[catalog] = dict(styles)
        for catalog, styles in local.catalogs.items():
            out.catalogs.setdefault(catalog, {}).update(styles)
        return out

    def __len__(self):
        return sum(len(s) for s in self.catalogs.values())
