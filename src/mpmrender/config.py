# src/mpmrender/config.py
from __future__ import annotations
from pathlib import Path
from typing import Any, Dict, Optional, Tuple
import copy
import sys
import yaml

# Paket-Root: .../src/mpmrender
PKG_ROOT = Path(__file__).resolve().parent
DEFAULT_CFG_PATH = PKG_ROOT / "config.default.yaml"
USER_CFG_PATH = Path.home() / ".config" / "mpmrender" / "config.yaml"

def _safe_load(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        return yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as e:
        # lieber leer weitermachen als den Core zu crashen
        print(f"[config] WARNING: cannot read {path}: {e}", file=sys.stderr)
        return {}

def _deep_merge(a: Dict[str, Any], b: Dict[str, Any]) -> Dict[str, Any]:
    out = copy.deepcopy(a)
    for k, v in (b or {}).items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = copy.deepcopy(v)
    return out

def load_config(
    user_path: Optional[Path] = None,
    default_path: Optional[Path] = None,
) -> Dict[str, Any]:
    """
    Lädt die Renderer-Konfiguration (Default + User-Overrides) und liefert ein gemergtes Dict.
    """
    dpath = Path(default_path) if default_path else DEFAULT_CFG_PATH
    upath = Path(user_path) if user_path else USER_CFG_PATH

    defaults = _safe_load(dpath)
    user = _safe_load(upath)
    cfg = _deep_merge(defaults, user)

    # Minimal-Defaults sicherstellen
    cfg.setdefault("velocity", {}).setdefault("range", [1, 127])
    cfg.setdefault("tempo", {}).setdefault("default_bpm", 120.0)
    cfg["tempo"].setdefault("default_beat_length", 0.25)
    cfg["tempo"].setdefault("integration_epsilon", 1e-3)
    cfg.setdefault("movement", {}).setdefault("tolerance", 0.1)
    cfg["movement"].setdefault("scale", 127)

    return cfg

def merged(cfg: Optional[Dict[str, Any]], overrides: Dict[str, Any]) -> Dict[str, Any]:
    """Konfiguration mit punktuellen Overrides (z.B. aus Tests oder CLI)."""
    return _deep_merge(cfg if cfg is not None else load_config(), overrides)

def get_velocity_range(cfg: Dict[str, Any]) -> Tuple[float, float]:
    """Bequemer Accessor."""
    lo, hi = (cfg.get("velocity", {}) or {}).get("range", [1, 127])
    return float(lo), float(hi)
