import pytest

from mpmrender.errors import UNRESOLVED_REFERENCE
from mpmrender.maps import InstructionMap, StyleSwitch, OrnamentInstruction, ORNAMENTATION_MAP
from mpmrender.ornaments import builtin_ornament, render_ornamentation
from mpmrender.styles import StyleTable, StyleDef, OrnamentDef, OrnamentEvent, ORNAMENTATION_STYLES


def _map(*entries):
    return InstructionMap(ORNAMENTATION_MAP, list(entries))


def test_builtin_templates_from_config(cfg):

    trill = builtin_ornament("trill", cfg)
    assert len(trill.events) == 8
    assert not trill.retain_host
    assert builtin_ornament("grace", cfg).retain_host
    assert builtin_ornament("nachschlag", cfg) is None


def test_trill_replaces_host(note, diag, cfg):

    """Eight alternating sub-notes of an eighth of the host duration each."""

    host = note(0, duration=480, pitch=60, velocity=100, id="n")
    out = render_ornamentation([host], _map(OrnamentInstruction(0, "trill")), StyleTable(), diag, cfg)
    assert host not in out
    assert len(out) == 8
    assert [n.date_perf for n in out] == pytest.approx([60.0 * k for k in range(8)])
    assert all(n.duration_perf == pytest.approx(60.0) for n in out)
    assert [n.pitch for n in out] == [60, 62] * 4
    assert [n.velocity_perf for n in out[:2]] == [100, 85]
    assert [n.id for n in out] == [f"n_orn{k}" for k in range(8)]
    assert out[3].ornament == {"ornament.name": "trill", "ornament.host": "n", "ornament.index": "3"}


def test_grace_note_keeps_delayed_host(note, diag, cfg):

    host = note(0, duration=480, pitch=60, velocity=100, id="n")
    out = render_ornamentation([host], _map(OrnamentInstruction(0, "grace")), StyleTable(), diag, cfg)
    assert len(out) == 2
    grace, kept = out
    assert kept is host
    assert host.date_perf == pytest.approx(30.0)
    assert host.duration_perf == pytest.approx(450.0)
    assert grace.date_perf == pytest.approx(-30.0)
    assert grace.duration_perf == pytest.approx(60.0)
    assert grace.pitch == 62
    assert grace.velocity_perf == 80


def test_style_definition_with_scale(note, diag, cfg):

    """A definition from the active style wins over the template, scale shrinks the span."""

    styles = StyleTable()
    styles.add(ORNAMENTATION_STYLES, StyleDef("basic", {"trill": OrnamentDef("trill", [
        OrnamentEvent(0.0, 0.5, 1.0, -2.0), OrnamentEvent(0.5, 0.5, 0.5, 0.0)])}))
    host = note(480, duration=480, pitch=60, velocity=100, id="n")
    out = render_ornamentation([host], _map(StyleSwitch(0, "basic"), OrnamentInstruction(480, "trill", scale=0.5)),
                               styles, diag, cfg)
    assert [n.date_perf for n in out] == pytest.approx([480.0, 600.0])
    assert [n.duration_perf for n in out] == pytest.approx([120.0, 120.0])
    assert [n.pitch for n in out] == [58, 60]
    assert [n.velocity_perf for n in out] == [100, 50]


def test_unresolved_ornament(note, diag, cfg):

    host = note(0, id="n")
    out = render_ornamentation([host], _map(OrnamentInstruction(0, "schleifer")), StyleTable(), diag, cfg)
    assert out == [host]
    warnings = diag.of_kind(UNRESOLVED_REFERENCE)
    assert len(warnings) == 1
    assert warnings[0].name == "schleifer"


def test_note_ids_select_host(note, diag, cfg):

    a, b = note(0, pitch=60, id="a"), note(0, pitch=67, id="b")
    out = render_ornamentation([a, b], _map(OrnamentInstruction(0, "trill", note_ids=["b"])),
                               StyleTable(), diag, cfg)
    assert a in out
    assert b not in out
    assert len(out) == 9


def test_ornament_follows_articulated_duration(note, diag, cfg):

    """Sub-notes divide duration.perf, the symbolic values follow the score duration."""

    host = note(0, duration=480, id="n")
    host.duration_perf = 240.0
    out = render_ornamentation([host], _map(OrnamentInstruction(0, "trill")), StyleTable(), diag, cfg)
    assert out[1].date_perf == pytest.approx(30.0)
    assert out[1].duration_perf == pytest.approx(30.0)
    assert out[1].date == pytest.approx(60.0)
    assert out[1].duration == pytest.approx(60.0)


def test_notes_without_instruction_untouched(note, diag, cfg):

    notes = [note(0, id="a"), note(480, id="b")]
    out = render_ornamentation(notes, _map(OrnamentInstruction(960, "trill")), StyleTable(), diag, cfg)
    assert out == notes
