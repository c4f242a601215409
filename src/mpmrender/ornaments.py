# src/mpmrender/ornaments.py
from __future__ import annotations
from typing import Dict, List, Optional
from .errors import Diagnostics
from .interpretation import clip_velocity, clip_duration
from .maps import InstructionMap, OrnamentInstruction, ORNAMENTATION_MAP
from .styles import StyleTable, OrnamentDef, OrnamentEvent, ORNAMENTATION_STYLES
from .timeline import ScoreNote

def builtin_ornament(name: str, cfg: dict) -> Optional[OrnamentDef]:
    """Vorlage aus cfg['ornaments'] (trill, mordent, turn, grace, ...)."""
    tpl = (cfg.get("ornaments", {}) or {}).get(name)
    if not tpl:
        return None
    events = []
    for row in tpl.get("notes", []) or []:
        off, dur, vel, pitch = (list(row) + [0.0, 0.0, 1.0, 0.0][len(row):])[:4]
        events.append(OrnamentEvent(float(off), float(dur), float(vel), float(pitch)))
    return OrnamentDef(name, events, bool(tpl.get("retain_host", False)), float(tpl.get("host_delay", 0.0)))

def resolve_ornament(omap: InstructionMap, index: int, ins: OrnamentInstruction,
                     styles: StyleTable, cfg: dict) -> Optional[OrnamentDef]:
    sw = omap.style_at(index)
    d = styles.resolve(ORNAMENTATION_STYLES, sw.name if sw else None, ins.name_ref)
    return d if d is not None else builtin_ornament(ins.name_ref, cfg)

def expand(host: ScoreNote, odef: OrnamentDef, scale: float, cfg: dict, diag: Diagnostics) -> List[ScoreNote]:
    """Sub-Events relativ zur (artikulierten) Host-Dauer erzeugen."""
    span = host.duration_perf * scale
    out = []
    for k, ev in enumerate(odef.events):
        dur = clip_duration(host, ev.duration * span, diag, ORNAMENTATION_MAP)
        n = ScoreNote(
            date=host.date + ev.date_offset * host.duration * scale,
            duration=max(0.0, ev.duration * host.duration * scale),
            pitch=host.pitch + ev.pitch_offset,
            velocity=host.velocity,
            id=f"{host.id}_orn{k}" if host.id else None,
        )
        n.date_perf = host.date_perf + ev.date_offset * span
        n.duration_perf = dur
        n.velocity_perf = clip_velocity(host, host.velocity_perf * ev.velocity, cfg, diag, ORNAMENTATION_MAP)
        n.ornament = {"ornament.name": odef.name, "ornament.host": host.id or "", "ornament.index": str(k)}
        out.append(n)
    return out

def render_ornamentation(notes: List[ScoreNote], omap: Optional[InstructionMap], styles: StyleTable,
                         diag: Diagnostics, cfg: dict) -> List[ScoreNote]:
    """
    Liefert die neue Notenfolge: Hosts ggf. ersetzt, Ornament-Noten einsortiert.
    Ornament-Noten werden selbst nicht erneut ornamentiert.
    """
    if omap is None or len(omap) == 0:
        return notes
    by_date: Dict[float, List[ScoreNote]] = {}
    for n in notes:
        by_date.setdefault(n.date, []).append(n)

    removed = set()
    added: List[ScoreNote] = []
    for i, ins in enumerate(omap):
        if not omap.is_instruction(ins):
            continue
        odef = resolve_ornament(omap, i, ins, styles, cfg)
        if odef is None:
            diag.unresolved(ORNAMENTATION_MAP, ins.date, ins.name_ref, "ornamentDef")
            continue
        targets = by_date.get(ins.date, [])
        if ins.note_ids:
            ids = set(ins.note_ids)
            targets = [n for n in targets if n.id in ids]
        for host in targets:
            if id(host) in removed:
                continue
            added.extend(expand(host, odef, ins.scale, cfg, diag))
            if odef.retain_host:
                delay = odef.host_delay * ins.scale * host.duration_perf
                host.date_perf += delay
                host.duration_perf = clip_duration(host, host.duration_perf - delay, diag, ORNAMENTATION_MAP)
            else:
                removed.add(id(host))

    out = [n for n in notes if id(n) not in removed] + added
    out.sort(key=lambda n: (n.date, n.pitch))
    return out
