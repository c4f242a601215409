from xml.etree import ElementTree as ET

import mido
import pytest

from mpmrender.analyze import read_score
from mpmrender.errors import DEGENERATE_SEGMENT, StructuralInputError, UnknownPerformanceError
from mpmrender.maps import (
    StyleSwitch, DynamicsInstruction, DYNAMICS_MAP, ORNAMENTATION_MAP,
)
from mpmrender.performance import read_performances, select_performance
from mpmrender.process import render_performance
from mpmrender.styles import DYNAMICS_STYLES, METRICAL_ACCENTUATION_STYLES, ORNAMENTATION_STYLES
from mpmrender.write import to_xml_string, write_midi, write_score

NS = "http://www.example.org/msm"


def _result(score_text, perf_text, cfg):
    score = read_score(score_text, cfg)
    return render_performance(score, select_performance(read_performances(perf_text)), cfg)


# ---------- score ----------

def test_read_score(score_xml, cfg):

    score = read_score(score_xml([(480, 240, 64, 90), (0, 480, 60, 100)], timesig=(3, 4)), cfg)
    assert score.ppq == 480
    assert score.title == "test"
    assert [(t.numerator, t.denominator) for t in score.time_signatures] == [(3, 4)]
    part = score.parts[0]
    assert (part.name, part.number, part.channel, part.port) == ("Piano", 1, 0, 0)
    assert [n.date for n in part.notes] == [0.0, 480.0]
    assert part.notes[1].pitch == 64
    assert part.notes[1].id == "piano_n0"


def test_read_score_keeps_foreign_attributes(cfg):

    text = ('<msm title="t"><part name="P"><dated><score>'
            '<note date="0" duration="480" pitch="60" staff="2"/></score></dated></part></msm>')
    score = read_score(text, cfg)
    n = score.parts[0].notes[0]
    assert score.ppq == 720
    assert n.attrs == {"staff": "2"}
    assert n.velocity == 100


def test_read_namespaced_score(cfg):

    text = (f'<msm xmlns="{NS}" pulsesPerQuarter="480"><part name="P" number="1"><dated><score>'
            f'<note date="0" duration="480" midi.pitch="60" velocity="70"/></score></dated></part></msm>')
    score = read_score(text, cfg)
    assert score.parts[0].notes[0].velocity == 70


@pytest.mark.parametrize("text", [
    '<mei/>',
    '<msm><part name="P"><dated><score><note date="0" midi.pitch="60"/></score></dated></part></msm>',
    '<msm><part name="P"><dated><score><note date="x" duration="1" midi.pitch="60"/></score></dated></part></msm>',
    '<msm pulsesPerQuarter="0"/>',
    '<msm><part',
])
def test_malformed_score(text, cfg):

    with pytest.raises(StructuralInputError):
        read_score(text, cfg)


def test_missing_attribute_is_named(cfg):

    text = '<msm><part name="P"><dated><score><note date="0" midi.pitch="60"/></score></dated></part></msm>'
    with pytest.raises(StructuralInputError) as info:
        read_score(text, cfg)
    assert info.value.attribute == "duration"


@pytest.mark.parametrize("attrs", [
    'date="0" duration="480" midi.pitch="60" velocity="NaN"',
    'date="0" duration="inf" midi.pitch="60"',
])
def test_non_finite_note_value(attrs, cfg):

    text = f'<msm><part name="P"><dated><score><note {attrs}/></score></dated></part></msm>'
    with pytest.raises(StructuralInputError, match="not finite"):
        read_score(text, cfg)


# ---------- performance ----------

def test_read_performance_document(perf_xml):

    header = ('<dynamicsStyles><styleDef name="basic"><dynamicsDef name="f" volume="90"/></styleDef></dynamicsStyles>'
              '<metricalAccentuationStyles><styleDef name="basic"><accentuationPatternDef name="bar" length="2">'
              '<accentuation beat="2" value="-1"/><accentuation beat="1" value="3"/>'
              '</accentuationPatternDef></styleDef></metricalAccentuationStyles>'
              '<ornamentationStyles><styleDef name="basic"><ornamentDef name="slide" retainHostNote="true">'
              '<note date.offset="0" duration="0.5" pitch.offset="-1"/></ornamentDef></styleDef></ornamentationStyles>')
    dated = ('<dynamicsMap><style date="0" name.ref="basic"/><dynamics date="0" volume="f"/>'
             '<dynamics date="480" volume="60" transition.to="80" subNoteDynamics="true"/></dynamicsMap>'
             '<ornamentationMap><ornament date="0" name.ref="slide" noteIds="#a #b"/></ornamentationMap>'
             '<imprecisionMap.tuning detuneUnit="Hz"><distribution.list date="0">'
             '<measurement value="1"/><measurement value="-2"/></distribution.list></imprecisionMap.tuning>'
             '<unknownMap><foo date="0"/></unknownMap>')
    perf = read_performances(perf_xml(dated=dated, header=header, ppq=720))[0]
    assert perf.ppq == 720

    styles = perf.global_.styles
    assert styles.resolve(DYNAMICS_STYLES, "basic", "f").volume == 90.0
    pattern = styles.resolve(METRICAL_ACCENTUATION_STYLES, "basic", "bar")
    assert pattern.accents == [(1.0, 3.0), (2.0, -1.0)]
    slide = styles.resolve(ORNAMENTATION_STYLES, "basic", "slide")
    assert slide.retain_host
    assert slide.events[0].pitch_offset == -1.0

    maps = perf.global_.maps
    assert set(maps) == {DYNAMICS_MAP, ORNAMENTATION_MAP, "imprecisionMap.tuning"}
    dmap = maps[DYNAMICS_MAP]
    assert isinstance(dmap[0], StyleSwitch)
    assert dmap[1] == DynamicsInstruction(0.0, "f")
    assert dmap[2].sub_note_dynamics
    assert maps[ORNAMENTATION_MAP][0].note_ids == ["a", "b"]
    tuning = maps["imprecisionMap.tuning"]
    assert tuning.attrs["detuneUnit"] == "Hz"
    assert tuning[0].values == [1.0, -2.0]


def test_read_performance_parts(perf_xml):

    parts = ('<part name="Violin" number="2" midi.channel="1" midi.port="0"><dated>'
             '<tempoMap><tempo date="0" bpm="90"/></tempoMap></dated></part>')
    perf = read_performances(perf_xml(parts=parts))[0]
    part = perf.parts[0]
    assert (part.name, part.number, part.channel, part.port) == ("Violin", 2, 1, 0)
    assert part.maps["tempoMap"][0].bpm == 90.0


def test_performance_root_and_errors():

    assert read_performances('<performance name="solo"/>')[0].name == "solo"
    with pytest.raises(StructuralInputError):
        read_performances("<msm/>")
    with pytest.raises(StructuralInputError):
        read_performances('<mpm><performance><global><dated><ornamentationMap>'
                          '<ornament date="0"/></ornamentationMap></dated></global></performance></mpm>')
    with pytest.raises(StructuralInputError):
        read_performances('<mpm><performance><global><dated><dynamicsMap>'
                          '<dynamics date="0" volume="80" curvature="steep"/></dynamicsMap></dated></global>'
                          '</performance></mpm>')


@pytest.mark.parametrize("dated", [
    '<dynamicsMap><dynamics date="0" volume="NaN"/></dynamicsMap>',
    '<dynamicsMap><dynamics date="0" volume="60" transition.to="inf"/></dynamicsMap>',
    '<tempoMap><tempo date="0" bpm="-inf"/></tempoMap>',
    '<articulationMap><articulation date="0" relativeDuration="nan"/></articulationMap>',
])
def test_non_finite_instruction_value(dated, perf_xml):

    with pytest.raises(StructuralInputError, match="not finite"):
        read_performances(perf_xml(dated=dated))


def test_nan_curve_shape_is_a_degenerate_segment(score_xml, perf_xml, cfg):

    """A NaN curvature does not fail the read, the segment stays at its start volume."""

    dated = ('<dynamicsMap><dynamics date="0" volume="60" transition.to="80" curvature="NaN"/>'
             '<dynamics date="960" volume="80"/></dynamicsMap>')
    result = _result(score_xml([(0, 480, 60, 100), (480, 480, 62, 100)]), perf_xml(dated=dated), cfg)
    assert [n.velocity_perf for n in result.score.parts[0].notes] == [60, 60]
    assert any(w.kind == DEGENERATE_SEGMENT for w in result.warnings)


def test_select_performance():

    perfs = read_performances('<mpm><performance name="a"/><performance name="b"/></mpm>')
    assert select_performance(perfs).name == "a"
    assert select_performance(perfs, "b").name == "b"
    with pytest.raises(UnknownPerformanceError):
        select_performance(perfs, "c")
    with pytest.raises(UnknownPerformanceError):
        select_performance([])


# ---------- writer ----------

def test_xml_output_carries_performance_attributes(score_xml, perf_xml, cfg):

    dated = ('<dynamicsMap><dynamics date="0" volume="80"/></dynamicsMap>'
             '<movementMap><movement date="0" controller="11" position="0.5"/></movementMap>')
    result = _result(score_xml([(0, 480, 60, 100)]), perf_xml(dated=dated), cfg)
    root = ET.fromstring(to_xml_string(result))
    note = next(root.iter("note"))
    assert note.get("date") == "0"
    assert note.get("velocity") == "100"
    assert note.get("velocity.perf") == "80.0"
    assert float(note.get("milliseconds.duration")) == pytest.approx(500.0)
    position = next(root.iter("position"))
    assert (position.get("controller"), position.get("value")) == ("11", "64")


def test_unchanged_score_fields_keep_their_text(perf_xml, cfg):

    text = ('<msm pulsesPerQuarter="480"><part name="P" number="1"><dated><score>'
            '<note date="0" duration="480" pitch="60" velocity="70" xml:id="a"/>'
            '<note date="480" duration="240" pitch="62"/></score></dated></part></msm>')
    dated = '<ornamentationMap><ornament date="480" name.ref="trill"/></ornamentationMap>'
    root = ET.fromstring(to_xml_string(_result(text, perf_xml(dated=dated), cfg)))
    first, *rest = root.iter("note")
    assert (first.get("date"), first.get("duration"), first.get("pitch"), first.get("velocity")) == \
        ("0", "480", "60", "70")
    assert first.get("midi.pitch") is None
    # ornament notes carry new values
    assert rest[0].get("midi.pitch") == "62.0"
    assert rest[1].get("date") == "510.0"


def test_rescaled_fields_are_rewritten(perf_xml, cfg):

    text = ('<msm pulsesPerQuarter="480"><part name="P" number="1"><dated><score>'
            '<note date="480" duration="480" midi.pitch="60" velocity="70"/></score></dated></part></msm>')
    note = next(ET.fromstring(to_xml_string(_result(text, perf_xml(ppq=960), cfg))).iter("note"))
    assert (note.get("date"), note.get("duration")) == ("960.0", "960.0")
    assert (note.get("midi.pitch"), note.get("velocity")) == ("60", "70")


def test_written_score_reads_back(perf_xml, cfg, tmp_path):

    """Namespace survives, the output is again a valid score."""

    text = (f'<msm xmlns="{NS}" title="t" pulsesPerQuarter="480"><part name="P" number="1"><dated><score>'
            f'<note date="0" duration="480" midi.pitch="60" velocity="70"/></score></dated></part></msm>')
    result = _result(text, perf_xml(ppq=960), cfg)
    out = tmp_path / "out" / "performed.msm"
    write_score(result, str(out))

    root = ET.parse(str(out)).getroot()
    assert root.tag == f"{{{NS}}}msm"
    assert root.get("pulsesPerQuarter") == "960"
    again = read_score(str(out), cfg)
    n = again.parts[0].notes[0]
    assert n.duration == 960.0
    assert n.attrs["duration.perf"] == "960.0"


def test_midi_export(score_xml, perf_xml, cfg, tmp_path):

    dated = ('<tempoMap><tempo date="0" bpm="60"/></tempoMap>'
             '<movementMap><movement date="0" controller="7" position="1"/></movementMap>')
    result = _result(score_xml([(0, 480, 60, 100), (480, 480, 64, 90)]), perf_xml(dated=dated), cfg)
    out = tmp_path / "performed.mid"
    write_midi(result, str(out))

    mid = mido.MidiFile(str(out))
    assert mid.ticks_per_beat == 480
    assert len(mid.tracks) == 2
    track = mid.tracks[1]
    ons = [m for m in track if m.type == "note_on"]
    assert [(m.note, m.velocity) for m in ons] == [(60, 100), (64, 90)]
    # 1000 ms on the fixed 120 BPM grid -> 960 ticks
    tick, starts = 0, []
    for m in track:
        tick += m.time
        if m.type == "note_on":
            starts.append(tick)
    assert starts == [0, 960]
    ccs = [m for m in track if m.type == "control_change"]
    assert [(m.control, m.value) for m in ccs] == [(7, 127)]
