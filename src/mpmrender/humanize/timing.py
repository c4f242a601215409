from __future__ import annotations
import math
from typing import Dict, List, Optional, Tuple
import numpy as np
from ..errors import Diagnostics, INVALID_PARAMETER
from ..interpretation import clip_velocity
from ..maps import (
    InstructionMap, RubatoInstruction, DistributionInstruction,
    RUBATO_MAP, IMPRECISION_MAP,
)
from ..styles import StyleTable, RUBATO_STYLES
from ..timeline import ScoreNote

# ---------- Rubato ----------

def rubato_params(rmap: InstructionMap, index: int, ins: RubatoInstruction, styles: StyleTable,
                  diag: Diagnostics) -> Optional[Tuple[float, float, float, float]]:
    """(frameLength, intensity, lateStart, earlyEnd) mit Randkorrekturen, None -> überspringen."""
    frame, intensity, late, early = ins.frame_length, ins.intensity, ins.late_start, ins.early_end
    if ins.name_ref:
        sw = rmap.style_at(index)
        d = styles.resolve(RUBATO_STYLES, sw.name if sw else None, ins.name_ref)
        if d is None:
            diag.unresolved(RUBATO_MAP, ins.date, ins.name_ref, "rubatoDef")
            return None
        frame, intensity, late, early = d.frame_length, d.intensity, d.late_start, d.early_end

    def invalid(msg):
        diag.warn(INVALID_PARAMETER, msg, map_kind=RUBATO_MAP, date=ins.date, name=ins.name_ref or ins.id)

    if frame is None or not frame > 0.0:
        invalid("frameLength must be positive, instruction skipped")
        return None
    if intensity == 0.0:
        invalid("intensity 0 replaced by 0.01")
        intensity = 0.01
    elif intensity < 0.0:
        invalid("negative intensity inverted")
        intensity = -intensity
    if late < 0.0:
        invalid("lateStart < 0 set to 0")
        late = 0.0
    if early > 1.0:
        invalid("earlyEnd > 1 set to 1")
        early = 1.0
    if late >= early:
        invalid("lateStart >= earlyEnd, reset to 0 and 1")
        late, early = 0.0, 1.0
    return frame, intensity, late, early

def rubato_transform(date: float, start: float, frame: float, intensity: float,
                     late: float, early: float, loop: bool) -> float:
    """Position innerhalb eines Rahmens verbiegen; Rahmengrenzen bleiben fix."""
    rel = date - start
    if rel < 0.0 or (not loop and rel >= frame):
        return date
    local = math.fmod(rel, frame)
    t = local / frame
    d = ((t ** intensity) * (early - late) + late) * frame
    return date + d - local

def render_rubato(notes: List[ScoreNote], rmap: Optional[InstructionMap], styles: StyleTable,
                  diag: Diagnostics):
    if rmap is None or len(rmap) == 0:
        return
    params: Dict[int, Optional[tuple]] = {}

    def shifted(date: float) -> float:
        i = rmap.instruction_index_before_at(date)
        if i < 0:
            return date
        if i not in params:
            params[i] = rubato_params(rmap, i, rmap[i], styles, diag)
        p = params[i]
        if p is None:
            return date
        ins = rmap[i]
        return rubato_transform(date, ins.date, *p, ins.loop)

    for n in notes:
        start = shifted(n.date_perf)
        end = shifted(n.end_perf)
        n.date_perf = start
        n.duration_perf = max(0.0, end - start)

# ---------- Asynchronität ----------

def render_asynchrony(notes: List[ScoreNote], amap: Optional[InstructionMap]):
    """milliseconds.offset der aktiven Instruktion auf milliseconds.date addieren."""
    if amap is None or len(amap) == 0:
        return
    for n in notes:
        ins = amap.instruction_at(n.date_perf)
        if ins is not None:
            n.ms_date += ins.offset_ms

# ---------- Imprecision ----------

def _limits(ins: DistributionInstruction, diag: Diagnostics, map_kind: str) -> Tuple[float, float]:
    lo = ins.params.get("limit.lower", 0.0)
    hi = ins.params.get("limit.upper", 0.0)
    if lo > hi:
        diag.warn(INVALID_PARAMETER, "limit.lower > limit.upper, swapped", map_kind=map_kind, date=ins.date)
        lo, hi = hi, lo
    return lo, hi

def draw(ins: DistributionInstruction, count: int, rng: np.random.Generator,
         diag: Diagnostics, map_kind: str) -> Optional[np.ndarray]:
    """count Abweichungen gemäß Verteilung; None bei unbekanntem Typ."""
    kind = ins.type[len("distribution."):]
    p = ins.params
    if kind == "list":
        if not ins.values:
            diag.warn(INVALID_PARAMETER, "empty distribution.list", map_kind=map_kind, date=ins.date)
            return None
        return np.resize(np.asarray(ins.values, dtype=float), count)

    lo, hi = _limits(ins, diag, map_kind)
    clip_lo = p.get("clip.lower", lo)
    clip_hi = p.get("clip.upper", hi)
    if kind == "uniform":
        out = rng.uniform(lo, hi, count)
    elif kind == "gaussian":
        out = np.clip(rng.normal(0.0, p.get("deviation.standard", 0.0), count), lo, hi)
    elif kind == "triangular":
        mode = float(np.clip(p.get("mode", 0.5 * (lo + hi)), lo, hi))
        out = rng.triangular(lo, mode, hi, count) if hi > lo else np.full(count, lo)
        out = np.clip(out, clip_lo, clip_hi)
    elif kind == "correlated.brownianNoise":
        step = abs(p.get("stepWidth.max", 0.0))
        out = np.empty(count)
        x = float(np.clip(0.0, lo, hi))
        for k in range(count):
            x = float(np.clip(x + rng.uniform(-step, step), lo, hi))
            out[k] = x
    elif kind == "correlated.compensatingTriangle":
        degree = p.get("degreeOfCorrelation", 1.0)
        out = np.empty(count)
        x = 0.0
        for k in range(count):
            mode = float(np.clip(-x * degree, lo, hi))
            x = rng.triangular(lo, mode, hi) if hi > lo else lo
            out[k] = x
        out = np.clip(out, clip_lo, clip_hi)
    else:
        diag.warn(INVALID_PARAMETER, f"unknown distribution '{ins.type}'", map_kind=map_kind, date=ins.date)
        return None
    return out

def render_imprecision(notes: List[ScoreNote], imap: Optional[InstructionMap], domain: str,
                       diag: Diagnostics, cfg: dict):
    """
    Pro Distribution-Instruktion ein eigener, deterministisch geseedeter Generator;
    die Werte werden den Noten ihres Gültigkeitsbereichs in date.perf-Reihenfolge zugeteilt.
    """
    if imap is None or len(imap) == 0:
        return
    map_kind = f"{IMPRECISION_MAP}.{domain}"
    default_seed = int((cfg.get("imprecision", {}) or {}).get("seed", 0))
    unit = imap.attrs.get("detuneUnit", "cents")
    ordered = sorted(notes, key=lambda n: (n.date_perf, n.pitch))

    for i, ins in enumerate(imap):
        if not imap.is_instruction(ins):
            continue
        end = imap.end_date(i)
        scope = [n for n in ordered if ins.date <= n.date_perf < end]
        if not scope:
            continue
        rng = np.random.default_rng(ins.seed if ins.seed is not None else default_seed)
        values = draw(ins, len(scope), rng, diag, map_kind)
        if values is None:
            continue
        for n, v in zip(scope, values):
            v = float(v)
            if domain == "timing":
                n.ms_date += v
            elif domain == "dynamics":
                n.velocity_perf = clip_velocity(n, n.velocity_perf + v, cfg, diag, map_kind)
            elif domain == "toneduration":
                n.ms_duration = max(0.0, n.ms_duration + v)
            elif domain == "tuning":
                if unit.lower() == "hz":
                    n.detune_hz = (n.detune_hz or 0.0) + v
                else:
                    n.detune_cents = (n.detune_cents or 0.0) + v
