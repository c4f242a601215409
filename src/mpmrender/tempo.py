# src/mpmrender/tempo.py
"""
Tempo: BPM-Verlauf B(d) und dessen Integration zu Millisekunden.

ms/pulse(d) = 60000 / (B(d) · beatLength · 4 · PPQ)
ms(D)       = ∫₀^D ms/pulse(d) dd
"""
from __future__ import annotations
import bisect
import math
from dataclasses import dataclass, field
from typing import List, Optional
import numpy as np
from .curve import BezierSegment, adaptive_sample
from .errors import Diagnostics, DEGENERATE_SEGMENT, INVALID_PARAMETER
from .maps import InstructionMap, TEMPO_MAP
from .styles import StyleTable, TEMPO_STYLES
from .timeline import ScoreNote, DEFAULT_BPM, DEFAULT_BEAT_LENGTH
from .util.time import ms_per_pulse

@dataclass
class TempoSegment:
    start: float
    end: float
    bpm: float
    beat_length: float
    transition_to: Optional[float] = None
    mean_tempo_at: Optional[float] = None
    bezier: Optional[BezierSegment] = None
    # Cache: Stützstellen und kumuliertes Integral ab start
    _dates: Optional[np.ndarray] = field(default=None, repr=False)
    _cum: Optional[np.ndarray] = field(default=None, repr=False)

    @property
    def is_constant(self) -> bool:
        return self.transition_to is None or not math.isfinite(self.end) or self.end <= self.start

    @property
    def exponent(self) -> float:
        # mittleres Tempo (b0+b1)/2 an relativer Position meanTempoAt
        return math.log(0.5) / math.log(self.mean_tempo_at)

    def bpm_at(self, date: float) -> float:
        if self.is_constant or date <= self.start:
            return self.bpm
        if date >= self.end:
            return self.transition_to
        if self.mean_tempo_at is not None:
            x = (date - self.start) / (self.end - self.start)
            return self.bpm + (self.transition_to - self.bpm) * x ** self.exponent
        return self.bezier.value_at(date)

class TempoCurve:
    """Stückweises Tempo einer Part (oder global) mit gecachten Teilintegralen."""

    def __init__(self, segments: List[TempoSegment], ppq: int,
                 default_bpm: float = DEFAULT_BPM, default_beat_length: float = DEFAULT_BEAT_LENGTH,
                 epsilon: float = 1e-3):
        self.segments = segments
        self.ppq = ppq
        self.default_mpp = ms_per_pulse(default_bpm, default_beat_length, ppq)
        self.epsilon = epsilon
        self._starts = [s.start for s in segments]
        self._cum = [0.0]
        for s in segments[:-1]:
            self._cum.append(self._cum[-1] + self._partial(s, s.end))
        self._origin = self._anchored(0.0)

    def mpp(self, seg: TempoSegment, date: float) -> float:
        return ms_per_pulse(seg.bpm_at(date), seg.beat_length, self.ppq)

    def _samples(self, seg: TempoSegment):
        if seg._dates is None:
            m = lambda bpm: ms_per_pulse(bpm, seg.beat_length, self.ppq)
            if seg.mean_tempo_at is not None:
                length = seg.end - seg.start
                pts = adaptive_sample(lambda u: (seg.start + u * length, seg.bpm_at(seg.start + u * length)),
                                      self.epsilon, m)
            else:
                pts = seg.bezier.sample(self.epsilon, m)
            dates = np.array([p[0] for p in pts], dtype=float)
            mpps = np.array([m(p[1]) for p in pts], dtype=float)
            steps = np.diff(dates) * (mpps[1:] + mpps[:-1]) * 0.5     # Trapezregel
            seg._dates = dates
            seg._cum = np.concatenate(([0.0], np.cumsum(steps)))
        return seg._dates, seg._cum

    def _partial(self, seg: TempoSegment, date: float) -> float:
        """∫ ms/pulse von seg.start bis date (date innerhalb des Segments)."""
        if seg.is_constant:
            return (date - seg.start) * ms_per_pulse(seg.bpm, seg.beat_length, self.ppq)
        dates, cum = self._samples(seg)
        j = int(np.searchsorted(dates, date, side="right")) - 1
        j = max(0, min(j, len(dates) - 1))
        d0 = dates[j]
        return float(cum[j] + (date - d0) * (self.mpp(seg, d0) + self.mpp(seg, date)) * 0.5)

    def _anchored(self, date: float) -> float:
        """Integral relativ zum Start des ersten Segments."""
        if not self.segments:
            return date * self.default_mpp
        if date < self._starts[0]:
            return -(self._starts[0] - date) * self.default_mpp
        k = bisect.bisect_right(self._starts, date) - 1
        return self._cum[k] + self._partial(self.segments[k], date)

    def ms(self, date: float) -> float:
        """Millisekunden vom Datum 0 bis date."""
        return self._anchored(date) - self._origin

def build_tempo_curve(tmap: Optional[InstructionMap], styles: StyleTable, ppq: int,
                      diag: Diagnostics, cfg: dict) -> TempoCurve:
    tcfg = cfg.get("tempo", {}) or {}
    default_bpm = float(tcfg.get("default_bpm", DEFAULT_BPM))
    default_bl = float(tcfg.get("default_beat_length", DEFAULT_BEAT_LENGTH))
    eps = float(tcfg.get("integration_epsilon", 1e-3))

    resolved = []
    for i, ins in enumerate(tmap or []):
        if not tmap.is_instruction(ins):
            continue
        sw = tmap.style_at(i)
        style = sw.name if sw else None
        b0 = styles.number(TEMPO_STYLES, style, ins.bpm, "value")
        b1 = styles.number(TEMPO_STYLES, style, ins.transition_to, "value")
        if b0 is None or (ins.transition_to is not None and b1 is None):
            missing = ins.bpm if b0 is None else ins.transition_to
            diag.unresolved(TEMPO_MAP, ins.date, str(missing), "tempoDef")
            continue
        if b0 <= 0 or (b1 is not None and b1 <= 0) or ins.beat_length <= 0:
            diag.warn(INVALID_PARAMETER, "bpm and beatLength must be positive, instruction skipped",
                      map_kind=TEMPO_MAP, date=ins.date, name=ins.id)
            continue
        resolved.append((ins, b0, b1))

    segments = []
    for k, (ins, b0, b1) in enumerate(resolved):
        end = resolved[k + 1][0].date if k + 1 < len(resolved) else math.inf
        seg = TempoSegment(ins.date, end, b0, ins.beat_length, b1)
        if b1 is not None and math.isfinite(end):
            m = ins.mean_tempo_at
            if m is not None and 0.0 < m < 1.0:
                seg.mean_tempo_at = m
            seg.bezier = BezierSegment(ins.date, end, b0, b1, ins.curvature, ins.protraction)
            if seg.bezier.is_degenerate:
                diag.warn(DEGENERATE_SEGMENT, f"segment {seg.bezier!r} treated as constant",
                          map_kind=TEMPO_MAP, date=ins.date)
                seg.transition_to = None
        segments.append(seg)
    return TempoCurve(segments, ppq, default_bpm, default_bl, eps)

def render_tempo(notes: List[ScoreNote], curve: TempoCurve):
    """milliseconds.date / milliseconds.duration aus date.perf und duration.perf."""
    for n in notes:
        start = curve.ms(n.date_perf)
        dur = curve.ms(n.end_perf) - start
        if n.duration_ms is not None:
            dur = n.duration_ms
        n.ms_date = start + n.delay_ms
        n.ms_duration = max(0.0, dur + n.duration_change_ms)
