from __future__ import annotations
import copy
import math
from typing import Dict, List, Optional
from .config import load_config, get_velocity_range
from .errors import Diagnostics, InternalError, NO_MATCHING_PART
from .humanize.timing import render_rubato, render_asynchrony, render_imprecision
from .humanize.velocity import render_metrical_accentuation
from .interpretation import render_dynamics, render_articulation, clip_velocity
from .maps import (
    InstructionMap, IMPRECISION_MAP, IMPRECISION_DOMAINS,
    DYNAMICS_MAP, TEMPO_MAP, METRICAL_ACCENTUATION_MAP, ARTICULATION_MAP, ORNAMENTATION_MAP,
    MOVEMENT_MAP, RUBATO_MAP, ASYNCHRONY_MAP,
)
from .movement import render_movement, POSITION_MAP
from .ornaments import render_ornamentation
from .performance import Performance, PerformancePart
from .styles import StyleTable
from .tempo import build_tempo_curve, render_tempo
from .timeline import Score, ScorePart, RenderResult
from .util.time import rescale_pulses

def working_copy(score: Score) -> Score:
    """Tiefe Kopie der Noten; die XML-Quellbäume werden nur referenziert."""
    memo = {id(score.xml): score.xml}
    for p in score.parts:
        memo[id(p.xml)] = p.xml
    return copy.deepcopy(score, memo)

def rescale(score: Score, ppq: int):
    """Partitur auf die PPQ der Performance umrechnen (in place)."""
    if ppq == score.ppq:
        return
    src = score.ppq
    for ts in score.time_signatures:
        ts.date = rescale_pulses(ts.date, src, ppq)
    for part in score.parts:
        for ts in part.time_signatures:
            ts.date = rescale_pulses(ts.date, src, ppq)
        for n in part.notes:
            n.date = rescale_pulses(n.date, src, ppq)
            n.duration = rescale_pulses(n.duration, src, ppq)
    score.ppq = ppq

def match_part(pp: PerformancePart, parts: List[ScorePart]) -> Optional[ScorePart]:
    """Zuordnung Performance-Part -> Partitur-Part: number, dann name, dann (channel, port)."""
    if pp.number is not None:
        for p in parts:
            if p.number == pp.number:
                return p
    if pp.name:
        for p in parts:
            if p.name == pp.name:
                return p
    if pp.channel is not None:
        for p in parts:
            if p.channel == pp.channel and (pp.port is None or p.port == pp.port):
                return p
    return None

def scoped_maps(perf: Performance, pp: Optional[PerformancePart]) -> Dict[str, InstructionMap]:
    """Part-Maps ersetzen globale Maps gleicher Art vollständig."""
    maps = dict(perf.global_.maps)
    if pp is not None:
        maps.update(pp.maps)
    return maps

def render_part(part: ScorePart, maps: Dict[str, InstructionMap], styles: StyleTable,
                score: Score, diag: Diagnostics, cfg: dict):
    notes = part.notes
    lo, hi = get_velocity_range(cfg)
    for n in notes:
        n.init_performance()
        if not lo <= n.velocity_perf <= hi:
            n.velocity_perf = clip_velocity(n, n.velocity_perf, cfg, diag)
    timesigs = part.time_signatures or score.time_signatures

    render_dynamics(notes, maps.get(DYNAMICS_MAP), styles, diag, cfg)
    render_metrical_accentuation(notes, maps.get(METRICAL_ACCENTUATION_MAP), styles, timesigs,
                                 score.ppq, diag, cfg)
    render_articulation(notes, maps.get(ARTICULATION_MAP), styles, diag, cfg)
    notes = render_ornamentation(notes, maps.get(ORNAMENTATION_MAP), styles, diag, cfg)
    render_rubato(notes, maps.get(RUBATO_MAP), styles, diag)

    curve = build_tempo_curve(maps.get(TEMPO_MAP), styles, score.ppq, diag, cfg)
    render_tempo(notes, curve)
    render_asynchrony(notes, maps.get(ASYNCHRONY_MAP))
    for domain in IMPRECISION_DOMAINS:
        render_imprecision(notes, maps.get(f"{IMPRECISION_MAP}.{domain}"), domain, diag, cfg)

    events = render_movement(maps.get(MOVEMENT_MAP), diag, cfg)
    if events:
        part.controller_maps[POSITION_MAP] = events
    part.notes = notes
    check_part(part, cfg)
    return curve

def check_part(part: ScorePart, cfg: dict):
    lo, hi = get_velocity_range(cfg)
    for n in part.notes:
        if not lo <= n.velocity_perf <= hi:
            raise InternalError(f"velocity.perf {n.velocity_perf} out of range (note {n.id})")
        if n.duration_perf < 0:
            raise InternalError(f"negative duration.perf (note {n.id})")
        if not (math.isfinite(n.ms_date) and math.isfinite(n.ms_duration)):
            raise InternalError(f"non-finite milliseconds (note {n.id})")

def render_performance(score: Score, performance: Performance, cfg: Optional[dict] = None) -> RenderResult:
    """
    Score + Performance -> gerenderte Kopie der Score.
    Die Eingabe-Score wird nicht verändert; behebbare Fehler landen in result.warnings.
    """
    cfg = cfg if cfg is not None else load_config()
    diag = Diagnostics()
    work = working_copy(score)
    rescale(work, performance.ppq or score.ppq)

    assigned: Dict[int, PerformancePart] = {}
    for pp in performance.parts:
        sp = match_part(pp, work.parts)
        if sp is None:
            diag.warn(NO_MATCHING_PART, "performance part has no counterpart in the score, skipped",
                      name=pp.label())
            continue
        assigned.setdefault(id(sp), pp)

    result = RenderResult(score=work, performance_name=performance.name)
    for part in work.parts:
        pp = assigned.get(id(part))
        styles = performance.global_.styles.scoped(pp.styles if pp is not None else None)
        result.tempo_curves.append(render_part(part, scoped_maps(performance, pp), styles, work, diag, cfg))
    result.warnings = diag.warnings
    return result
