# src/mpmrender/movement.py
"""
movementMap -> positionMap: adaptive Abtastung der Controller-Bewegungen.
Werte sind normiert (0..1) und werden erst beim Ausgeben auf movement.scale skaliert.
"""
from __future__ import annotations
import math
from typing import List, Optional
from .curve import BezierSegment
from .errors import Diagnostics, DEGENERATE_SEGMENT
from .maps import InstructionMap, MOVEMENT_MAP
from .timeline import ControllerEvent

POSITION_MAP = "positionMap"

def start_position(mmap: InstructionMap, index: int) -> float:
    """position oder, falls fehlend, das Ziel der vorigen Bewegung (inkl. Index 0), sonst 0."""
    ins = mmap[index]
    if ins.position is not None:
        return ins.position
    j = mmap.previous_instruction_index(index)
    if j < 0:
        return 0.0
    prev = mmap[j]
    return prev.transition_to if prev.transition_to is not None else start_position(mmap, j)

def render_movement(mmap: Optional[InstructionMap], diag: Diagnostics, cfg: dict) -> List[ControllerEvent]:
    if mmap is None or len(mmap) == 0:
        return []
    mcfg = cfg.get("movement", {}) or {}
    tolerance = float(mcfg.get("tolerance", 0.1))
    scale = float(mcfg.get("scale", 127))

    samples = []   # (date, value, controller)
    indices = [i for i, e in enumerate(mmap) if mmap.is_instruction(e)]
    for k, i in enumerate(indices):
        ins = mmap[i]
        v0 = start_position(mmap, i)
        v1 = ins.transition_to if ins.transition_to is not None else v0
        if k == len(indices) - 1:
            # letzte Bewegung: ein Event mit ihrem Ziel
            samples.append((ins.date, v1, ins.controller))
            continue
        seg = BezierSegment(ins.date, mmap[indices[k + 1]].date, v0, v1, ins.curvature, ins.protraction)
        if seg.is_degenerate and math.isfinite(seg.length):
            diag.warn(DEGENERATE_SEGMENT, f"segment {seg!r} treated as constant",
                      map_kind=MOVEMENT_MAP, date=ins.date)
        for date, value in seg.sample(tolerance):
            samples.append((date, value, ins.controller))

    events: List[ControllerEvent] = []
    for date, value, controller in samples:
        v = int(round(value * scale))
        if events and events[-1].value == v and events[-1].controller == controller:
            continue
        events.append(ControllerEvent(date, v, controller))
    return events
