import pathlib

import pytest

from mpmrender.config import load_config
from mpmrender.errors import Diagnostics
from mpmrender.timeline import ScoreNote


@pytest.fixture
def cfg(tmp_path):
    """Packaged defaults only (no user override file)."""
    return load_config(user_path=tmp_path / "no-such-config.yaml")


@pytest.fixture
def diag():
    return Diagnostics()


@pytest.fixture
def note():
    """Factory for a note with its performance attributes initialised."""

    def make(date=0.0, duration=480.0, pitch=60, velocity=100, id=None):
        n = ScoreNote(date=float(date), duration=float(duration), pitch=float(pitch),
                      velocity=float(velocity), id=id)
        n.init_performance()
        return n

    return make


@pytest.fixture
def score_xml():
    """Factory for a one-part MSM document; notes are (date, duration, pitch, velocity[, id])."""

    def make(notes, ppq=480, timesig=None, parts=None):
        global_ts = ""
        if timesig:
            num, den = timesig
            global_ts = (f'<global><dated><timeSignatureMap>'
                         f'<timeSignature date="0" numerator="{num}" denominator="{den}"/>'
                         f'</timeSignatureMap></dated></global>')
        if parts is None:
            parts = [("Piano", 1, 0, 0, notes)]
        body = []
        for name, number, channel, port, part_notes in parts:
            rows = []
            for k, row in enumerate(part_notes):
                date, dur, pitch, vel = row[:4]
                nid = row[4] if len(row) > 4 else f"{name.lower()}_n{k}"
                rows.append(f'<note date="{date}" duration="{dur}" midi.pitch="{pitch}" '
                            f'velocity="{vel}" xml:id="{nid}"/>')
            body.append(f'<part name="{name}" number="{number}" midi.channel="{channel}" midi.port="{port}">'
                        f'<dated><score>{"".join(rows)}</score></dated></part>')
        return f'<msm title="test" pulsesPerQuarter="{ppq}">{global_ts}{"".join(body)}</msm>'

    return make


@pytest.fixture
def perf_xml():
    """Factory for an MPM document with one performance."""

    def make(dated="", header="", parts="", ppq=480, name="default"):
        return (f'<mpm><performance name="{name}" pulsesPerQuarter="{ppq}">'
                f'<global><header>{header}</header><dated>{dated}</dated></global>'
                f'{parts}</performance></mpm>')

    return make


@pytest.fixture
def write_file(tmp_path):

    def write(name, text):
        path = pathlib.Path(tmp_path) / name
        path.write_text(text, encoding="utf-8")
        return path

    return write
