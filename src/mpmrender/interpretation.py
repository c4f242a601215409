# src/mpmrender/interpretation.py
"""
Dynamik und Artikulation: die Stufen, die velocity.perf, duration.perf und
date.perf direkt aus den Instruktionen einer Map ableiten.
"""
from __future__ import annotations
from typing import Dict, List, Optional
import numpy as np
from .config import get_velocity_range
from .curve import PiecewiseCurve, chain
from .errors import Diagnostics, DEGENERATE_SEGMENT, RANGE_CLIP, UNRESOLVED_REFERENCE
from .maps import InstructionMap, ArticulationInstruction, DYNAMICS_MAP, ARTICULATION_MAP
from .styles import StyleTable, DYNAMICS_STYLES, ARTICULATION_STYLES
from .timeline import ScoreNote

# ---------- Clipping ----------

def clip_velocity(note: ScoreNote, v: float, cfg: dict, diag: Diagnostics,
                  map_kind: Optional[str] = None) -> float:
    lo, hi = get_velocity_range(cfg)
    vv = float(int(round(v)))
    out = float(np.clip(vv, lo, hi))
    if out != vv:
        diag.warn(RANGE_CLIP, f"velocity {vv:g} clipped to {out:g}", map_kind=map_kind,
                  date=note.date, name=note.id)
    return out

def clip_duration(note: ScoreNote, d: float, diag: Diagnostics, map_kind: Optional[str] = None) -> float:
    if d < 0.0:
        diag.warn(RANGE_CLIP, f"duration {d:g} clipped to 0", map_kind=map_kind,
                  date=note.date, name=note.id)
        return 0.0
    return d

# ---------- Dynamik ----------

def build_dynamics_curve(dmap: InstructionMap, styles: StyleTable, diag: Diagnostics) -> PiecewiseCurve:
    """Lautstärkeverlauf V(d); nicht auflösbare Labels -> Instruktion entfällt."""
    points, meta = [], []
    for i, ins in enumerate(dmap):
        if not dmap.is_instruction(ins):
            continue
        sw = dmap.style_at(i)
        style = sw.name if sw else None
        v0 = styles.number(DYNAMICS_STYLES, style, ins.volume, "volume")
        if v0 is None:
            diag.unresolved(DYNAMICS_MAP, ins.date, str(ins.volume), "dynamicsDef")
            continue
        v1 = styles.number(DYNAMICS_STYLES, style, ins.transition_to, "volume")
        if ins.transition_to is not None and v1 is None:
            diag.unresolved(DYNAMICS_MAP, ins.date, str(ins.transition_to), "dynamicsDef")
            continue
        points.append((ins.date, v0, v1, ins.curvature, ins.protraction))
        meta.append(ins)

    def degenerate(seg):
        diag.warn(DEGENERATE_SEGMENT, f"segment {seg!r} treated as constant",
                  map_kind=DYNAMICS_MAP, date=seg.start_date)

    return PiecewiseCurve(chain(points, degenerate), meta)

def render_dynamics(notes: List[ScoreNote], dmap: Optional[InstructionMap], styles: StyleTable,
                    diag: Diagnostics, cfg: dict):
    """velocity.perf = round(V(date)); vor der ersten Instruktion bleibt die Partitur-Velocity."""
    if dmap is None or len(dmap) == 0:
        return
    curve = build_dynamics_curve(dmap, styles, diag)
    if len(curve) == 0:
        return
    offset = float((cfg.get("dynamics", {}) or {}).get("sub_note_offset", 0.25))
    for n in notes:
        i = curve.index_at(n.date)
        if i < 0:
            continue
        at = n.date
        ins = curve.meta[i]
        if ins.sub_note_dynamics and ins.transition_to is not None:
            at = n.date + offset * n.duration
        n.velocity_perf = clip_velocity(n, curve.segments[i].value_at(at), cfg, diag, DYNAMICS_MAP)

# ---------- Artikulation ----------

def articulate(note: ScoreNote, mods: Dict[str, float], cfg: dict, diag: Diagnostics):
    """Modifikatoren in fester Reihenfolge anwenden."""
    dur = note.duration_perf
    if "absoluteDuration" in mods:
        dur = mods["absoluteDuration"]
    if "relativeDuration" in mods:
        dur *= mods["relativeDuration"]
    if "absoluteDurationChange" in mods:
        dur += mods["absoluteDurationChange"]
    note.duration_perf = clip_duration(note, dur, diag, ARTICULATION_MAP)

    # ms-Werte erst nach der Tempo-Umrechnung
    if "absoluteDurationMs" in mods:
        note.duration_ms = max(0.0, mods["absoluteDurationMs"])
    if "absoluteDurationChangeMs" in mods:
        note.duration_change_ms += mods["absoluteDurationChangeMs"]

    vel = note.velocity_perf
    touched = False
    if "absoluteVelocity" in mods:
        vel, touched = mods["absoluteVelocity"], True
    if "relativeVelocity" in mods:
        vel, touched = vel * mods["relativeVelocity"], True
    if "absoluteVelocityChange" in mods:
        vel, touched = vel + mods["absoluteVelocityChange"], True
    if touched:
        note.velocity_perf = clip_velocity(note, vel, cfg, diag, ARTICULATION_MAP)

    if "absoluteDelay" in mods:
        note.date_perf += mods["absoluteDelay"]
    if "absoluteDelayMs" in mods:
        note.delay_ms += mods["absoluteDelayMs"]

    if "detuneCents" in mods:
        note.detune_cents = mods["detuneCents"]
    if "detuneHz" in mods:
        note.detune_hz = mods["detuneHz"]

def _modifiers_of(amap: InstructionMap, index: int, ins: ArticulationInstruction,
                  styles: StyleTable, diag: Diagnostics) -> Optional[tuple]:
    """Definition (name.ref) zuerst, danach die eigenen Attribute der Instruktion."""
    mods: Dict[str, float] = {}
    if ins.name_ref:
        sw = amap.style_at(index)
        d = styles.resolve(ARTICULATION_STYLES, sw.name if sw else None, ins.name_ref)
        if d is None:
            diag.unresolved(ARTICULATION_MAP, ins.date, ins.name_ref, "articulationDef")
            return None
        mods.update(d.modifiers)
    return mods, dict(ins.modifiers)

def render_articulation(notes: List[ScoreNote], amap: Optional[InstructionMap], styles: StyleTable,
                        diag: Diagnostics, cfg: dict):
    if amap is None or len(amap) == 0:
        return
    by_date: Dict[float, List[ScoreNote]] = {}
    for n in notes:
        by_date.setdefault(n.date, []).append(n)

    articulated = set()
    for i, ins in enumerate(amap):
        if not amap.is_instruction(ins):
            continue
        resolved = _modifiers_of(amap, i, ins, styles, diag)
        if resolved is None:
            continue
        targets = by_date.get(ins.date, [])
        if ins.note_ids:
            ids = set(ins.note_ids)
            targets = [n for n in targets if n.id in ids]
        for n in targets:
            for mods in resolved:
                if mods:
                    articulate(n, mods, cfg, diag)
            articulated.add(id(n))

    # defaultArticulation des aktiven Styles für alle übrigen Noten
    for n in notes:
        if id(n) in articulated:
            continue
        sw = amap.style_at_date(n.date)
        if sw is None or not sw.default_articulation:
            continue
        d = styles.resolve(ARTICULATION_STYLES, sw.name, sw.default_articulation)
        if d is None:
            diag.warn(UNRESOLVED_REFERENCE, f"defaultArticulation '{sw.default_articulation}' not found",
                      map_kind=ARTICULATION_MAP, date=sw.date, name=sw.default_articulation)
            continue
        articulate(n, d.modifiers, cfg, diag)
