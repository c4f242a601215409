from __future__ import annotations
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any

DEFAULT_PPQ = 720
DEFAULT_BPM = 120.0
DEFAULT_BEAT_LENGTH = 0.25

# --- Score (Eingabe + Arbeitskopie) ---

@dataclass
class TimeSignature:
    date: float
    numerator: int = 4
    denominator: int = 4

@dataclass
class ScoreNote:
    date: float
    duration: float
    pitch: float
    velocity: float
    id: Optional[str] = None
    attrs: Dict[str, str] = field(default_factory=dict)  # restliche XML-Attribute, unverändert
    source: Dict[str, str] = field(default_factory=dict)  # Originaltext der Partiturfelder (date, pitch, ...)

    # Performance-Attribute (werden vom Renderer gesetzt)
    date_perf: Optional[float] = None
    duration_perf: Optional[float] = None
    velocity_perf: Optional[float] = None
    ms_date: Optional[float] = None
    ms_duration: Optional[float] = None

    # Millisekunden-Modifikatoren aus der Artikulation, erst nach der Tempo-Umrechnung aufgelöst
    delay_ms: float = 0.0
    duration_ms: Optional[float] = None
    duration_change_ms: float = 0.0

    detune_cents: Optional[float] = None
    detune_hz: Optional[float] = None
    ornament: Dict[str, str] = field(default_factory=dict)

    def init_performance(self):
        self.date_perf = float(self.date)
        self.duration_perf = float(self.duration)
        self.velocity_perf = float(self.velocity)

    @property
    def end_perf(self) -> float:
        return self.date_perf + self.duration_perf

@dataclass
class ControllerEvent:
    date: float
    value: int
    controller: str

@dataclass
class ScorePart:
    name: str
    number: Optional[int] = None
    channel: Optional[int] = None
    port: Optional[int] = None
    notes: List[ScoreNote] = field(default_factory=list)
    time_signatures: List[TimeSignature] = field(default_factory=list)
    controller_maps: Dict[str, List[ControllerEvent]] = field(default_factory=dict)
    xml: Any = None   # Quell-Element <part>

    def sort_notes(self):
        self.notes.sort(key=lambda n: (n.date, n.pitch))

@dataclass
class Score:
    title: str
    ppq: int = DEFAULT_PPQ
    parts: List[ScorePart] = field(default_factory=list)
    time_signatures: List[TimeSignature] = field(default_factory=list)
    xml: Any = None   # Quell-Element <msm>

# --- Diagnose ---

@dataclass
class RenderWarning:
    kind: str              # "UnresolvedReference" | "DegenerateSegment" | "RangeClip" | "NoMatchingPart" | "InvalidParameter"
    map_kind: Optional[str]
    date: Optional[float]
    name: Optional[str]
    message: str = ""

    def key(self):
        return (self.kind, self.map_kind, self.date, self.name)

    def __str__(self) -> str:
        where = []
        if self.map_kind: where.append(self.map_kind)
        if self.date is not None: where.append(f"date={self.date:g}")
        if self.name: where.append(f"name={self.name}")
        loc = f" ({', '.join(where)})" if where else ""
        return f"{self.kind}{loc}: {self.message}"

@dataclass
class RenderResult:
    score: Score
    warnings: List[RenderWarning] = field(default_factory=list)
    performance_name: Optional[str] = None
    tempo_curves: List[Any] = field(default_factory=list)   # je Part, für ms-Umrechnung der Controller
