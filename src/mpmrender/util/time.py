from __future__ import annotations

def rescale_pulses(value: float, from_ppq: int, to_ppq: int) -> float:
    if from_ppq <= 0 or from_ppq == to_ppq:
        return value
    return value * (to_ppq / from_ppq)

def pulses_per_beat(ppq: int, denominator: int) -> float:
    # Zählzeit = 1/denominator einer Ganzen, eine Ganze = 4 Viertel
    return 4.0 * ppq / max(1, int(denominator))

def ms_per_pulse(bpm: float, beat_length: float, ppq: int) -> float:
    """60000 / (bpm · beatLength · 4 · PPQ)"""
    return 60000.0 / (bpm * beat_length * 4.0 * ppq)
