from __future__ import annotations
import math
from typing import List, Optional, Tuple
import numpy as np
from ..errors import Diagnostics
from ..interpretation import clip_velocity
from ..maps import InstructionMap, METRICAL_ACCENTUATION_MAP
from ..styles import StyleTable, AccentuationPatternDef, METRICAL_ACCENTUATION_STYLES
from ..timeline import ScoreNote, TimeSignature
from ..util.time import pulses_per_beat

def timesig_at(timesigs: List[TimeSignature], date: float) -> TimeSignature:
    """Zuletzt aktive Taktangabe an 'date' (Default 4/4 ab 0)."""
    last = TimeSignature(0.0, 4, 4)
    for ts in timesigs:
        if ts.date <= date:
            last = ts
        else:
            break
    return last

def bar_start(ts: TimeSignature, date: float, ppq: int) -> float:
    """
    Taktanfang, in dem 'date' liegt, gegeben die letzte Taktangabe.
    Annahme: konstantes Raster bis zur nächsten Taktwechsel-Marke.
    """
    bar_len = ts.numerator * pulses_per_beat(ppq, ts.denominator)
    rel = max(0.0, date - ts.date)
    k = math.floor(rel / bar_len + 1e-9)
    return ts.date + k * bar_len

def pattern_arrays(pattern: AccentuationPatternDef) -> Tuple[np.ndarray, np.ndarray]:
    """Zyklisch erweiterte Stützstellen (beat, value) für np.interp."""
    beats = [b for b, _ in pattern.accents]
    values = [v for _, v in pattern.accents]
    L = pattern.length
    xs = [beats[-1] - L] + beats + [beats[0] + L]
    ys = [values[-1]] + values + [values[0]]
    return np.asarray(xs, dtype=float), np.asarray(ys, dtype=float)

def accent_at(pattern: AccentuationPatternDef, beat: float) -> float:
    """Akzent an einer 1-basierten Zählzeit, linear zwischen den Musterpunkten."""
    if not pattern.accents or pattern.length <= 0:
        return 0.0
    local_beat = (beat - 1.0) % pattern.length + 1.0
    xs, ys = pattern_arrays(pattern)
    return float(np.interp(local_beat, xs, ys))

def render_metrical_accentuation(notes: List[ScoreNote], amap: Optional[InstructionMap], styles: StyleTable,
                                 timesigs: List[TimeSignature], ppq: int, diag: Diagnostics, cfg: dict):
    if amap is None or len(amap) == 0:
        return
    for n in notes:
        i = amap.instruction_index_before_at(n.date)
        if i < 0:
            continue
        ins = amap[i]
        sw = amap.style_at(i)
        pattern = styles.resolve(METRICAL_ACCENTUATION_STYLES, sw.name if sw else None, ins.pattern)
        if pattern is None:
            diag.unresolved(METRICAL_ACCENTUATION_MAP, ins.date, ins.pattern, "accentuationPatternDef")
            continue

        ts = timesig_at(timesigs, n.date)
        beat_len = pulses_per_beat(ppq, ts.denominator)
        if ins.stick_to_measures:
            origin = bar_start(ts, n.date, ppq)
            first = bar_start(timesig_at(timesigs, ins.date), ins.date, ppq)
        else:
            origin = first = ins.date

        if not ins.loop and (n.date - first) / beat_len >= pattern.length:
            continue
        beat = (n.date - origin) / beat_len + 1.0
        accent = accent_at(pattern, beat) * ins.scale
        if accent != 0.0:
            n.velocity_perf = clip_velocity(n, n.velocity_perf + accent, cfg, diag, METRICAL_ACCENTUATION_MAP)
