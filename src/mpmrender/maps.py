from __future__ import annotations
import bisect
import math
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Union

Label = Union[float, str]   # Zahl oder Style-Label

DYNAMICS_MAP = "dynamicsMap"
TEMPO_MAP = "tempoMap"
METRICAL_ACCENTUATION_MAP = "metricalAccentuationMap"
ARTICULATION_MAP = "articulationMap"
ORNAMENTATION_MAP = "ornamentationMap"
MOVEMENT_MAP = "movementMap"
RUBATO_MAP = "rubatoMap"
ASYNCHRONY_MAP = "asynchronyMap"
IMPRECISION_MAP = "imprecisionMap"   # + ".timing" | ".dynamics" | ".toneduration" | ".tuning"

IMPRECISION_DOMAINS = ("timing", "dynamics", "toneduration", "tuning")

# --- Einträge ---

@dataclass
class StyleSwitch:
    """<style date name.ref [defaultArticulation]> – kein Instruction-Eintrag."""
    date: float
    name: str
    default_articulation: Optional[str] = None

@dataclass
class DynamicsInstruction:
    date: float
    volume: Label
    transition_to: Optional[Label] = None
    curvature: float = 0.0
    protraction: float = 0.0
    sub_note_dynamics: bool = False
    id: Optional[str] = None

@dataclass
class TempoInstruction:
    date: float
    bpm: Label
    beat_length: float = 0.25
    transition_to: Optional[Label] = None
    mean_tempo_at: Optional[float] = None
    curvature: float = 0.0
    protraction: float = 0.0
    id: Optional[str] = None

@dataclass
class AccentuationInstruction:
    date: float
    pattern: str                  # name.ref -> accentuationPatternDef
    scale: float = 1.0
    loop: bool = True
    stick_to_measures: bool = True
    id: Optional[str] = None

ARTICULATION_MODIFIERS = (
    "absoluteDuration", "relativeDuration", "absoluteDurationChange", "absoluteDurationMs",
    "absoluteDurationChangeMs", "absoluteVelocity", "relativeVelocity", "absoluteVelocityChange",
    "absoluteDelay", "absoluteDelayMs", "detuneCents", "detuneHz",
)

@dataclass
class ArticulationInstruction:
    date: float
    name_ref: Optional[str] = None
    modifiers: Dict[str, float] = field(default_factory=dict)
    note_ids: List[str] = field(default_factory=list)
    id: Optional[str] = None

@dataclass
class OrnamentInstruction:
    date: float
    name_ref: str
    scale: float = 1.0
    note_ids: List[str] = field(default_factory=list)
    id: Optional[str] = None

@dataclass
class MovementInstruction:
    date: float
    controller: str
    position: Optional[float] = None      # None -> transition.to der vorigen Bewegung
    transition_to: Optional[float] = None
    curvature: float = 0.0
    protraction: float = 0.0
    id: Optional[str] = None

@dataclass
class RubatoInstruction:
    date: float
    name_ref: Optional[str] = None
    frame_length: Optional[float] = None
    intensity: float = 1.0
    late_start: float = 0.0
    early_end: float = 1.0
    loop: bool = False
    id: Optional[str] = None

@dataclass
class AsynchronyInstruction:
    date: float
    offset_ms: float
    id: Optional[str] = None

@dataclass
class DistributionInstruction:
    date: float
    type: str                              # "distribution.uniform" | ...
    params: Dict[str, float] = field(default_factory=dict)
    values: List[float] = field(default_factory=list)   # distribution.list
    seed: Optional[int] = None
    id: Optional[str] = None

class InstructionMap:
    """
    Flache, nach date sortierte Folge von Einträgen einer Map-Art.
    Gleiches Datum: Einfügereihenfolge, der zuletzt eingefügte Eintrag ist aktiv.
    StyleSwitch-Einträge liegen in derselben Folge, werden bei Segmenten aber übersprungen.
    """

    def __init__(self, kind: str, entries=None, **attrs):
        self.kind = kind
        self.attrs: Dict[str, str] = dict(attrs)     # z.B. detuneUnit bei imprecisionMap.tuning
        self._dates: List[float] = []
        self._entries: List[object] = []
        for e in entries or []:
            self.insert(e)

    def insert(self, entry) -> int:
        i = bisect.bisect_right(self._dates, entry.date)
        self._dates.insert(i, entry.date)
        self._entries.insert(i, entry)
        return i

    def __len__(self):
        return len(self._entries)

    def __iter__(self) -> Iterator:
        return iter(self._entries)

    def __getitem__(self, index: int):
        return self._entries[index]

    @staticmethod
    def is_instruction(entry) -> bool:
        return not isinstance(entry, StyleSwitch)

    def index_before_at(self, date: float) -> int:
        """Größter Index mit entry.date <= date, sonst -1."""
        return bisect.bisect_right(self._dates, date) - 1

    def instruction_index_before_at(self, date: float) -> int:
        i = self.index_before_at(date)
        while i >= 0 and not self.is_instruction(self._entries[i]):
            i -= 1
        return i

    def instruction_at(self, date: float) -> Optional[object]:
        i = self.instruction_index_before_at(date)
        return self._entries[i] if i >= 0 else None

    def end_date(self, index: int) -> float:
        """Datum der nächsten Instruction nach index, sonst +inf."""
        for j in range(index + 1, len(self._entries)):
            if self.is_instruction(self._entries[j]):
                return self._dates[j]
        return math.inf

    def previous_instruction_index(self, index: int) -> int:
        # inklusiv bis Index 0
        for j in range(index - 1, -1, -1):
            if self.is_instruction(self._entries[j]):
                return j
        return -1

    def style_at(self, index: int) -> Optional[StyleSwitch]:
        """Der bei index aktive Style (Rückwärtssuche)."""
        for j in range(min(index, len(self._entries) - 1), -1, -1):
            e = self._entries[j]
            if isinstance(e, StyleSwitch):
                return e
        return None

    def style_at_date(self, date: float) -> Optional[StyleSwitch]:
        return self.style_at(self.index_before_at(date))

    def __repr__(self):
        return f"InstructionMap({self.kind!r}, {len(self)} entries)"
