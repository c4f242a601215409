from mpmrender.config import get_velocity_range, load_config, merged


def test_packaged_defaults(cfg):

    assert get_velocity_range(cfg) == (1.0, 127.0)
    assert cfg["tempo"]["default_bpm"] == 120.0
    assert cfg["movement"]["tolerance"] == 0.1
    assert "trill" in cfg["ornaments"]


def test_user_file_is_merged(tmp_path):

    """User values win, untouched defaults remain."""

    user = tmp_path / "config.yaml"
    user.write_text("velocity:\n  range: [10, 100]\nmovement:\n  tolerance: 0.05\n", encoding="utf-8")
    cfg = load_config(user_path=user)
    assert get_velocity_range(cfg) == (10.0, 100.0)
    assert cfg["movement"]["tolerance"] == 0.05
    assert cfg["movement"]["scale"] == 127


def test_broken_user_file_falls_back_to_defaults(tmp_path, capsys):

    user = tmp_path / "config.yaml"
    user.write_text("velocity: [unclosed\n", encoding="utf-8")
    cfg = load_config(user_path=user)
    assert get_velocity_range(cfg) == (1.0, 127.0)
    assert "[config] WARNING" in capsys.readouterr().err


def test_missing_default_file_still_has_minimum(tmp_path):

    cfg = load_config(user_path=tmp_path / "a.yaml", default_path=tmp_path / "b.yaml")
    assert get_velocity_range(cfg) == (1.0, 127.0)
    assert cfg["tempo"]["integration_epsilon"] == 1e-3


def test_merged_overrides(cfg):

    out = merged(cfg, {"imprecision": {"seed": 42}})
    assert out["imprecision"]["seed"] == 42
    assert cfg["imprecision"]["seed"] == 0
    assert out["velocity"] == cfg["velocity"]
