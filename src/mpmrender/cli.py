from __future__ import annotations
import argparse, pathlib, sys, traceback
from . import analyze, performance, process, write
from .config import load_config
from .errors import StructuralInputError, UnknownPerformanceError, InternalError

def _resolve(path: str) -> pathlib.Path:
    return pathlib.Path(path).expanduser().resolve()

def cmd_render(args) -> int:
    score_path = _resolve(args.score)
    perf_path = _resolve(args.performance_file)
    for label, path in (("score", score_path), ("performance", perf_path)):
        if not path.exists():
            print(f"[cli] ERROR: {label} not found: {path}", file=sys.stderr)
            return 1

    cfg = load_config(args.config)
    print(f"[cli] score       = {score_path}", file=sys.stderr)
    print(f"[cli] performance = {perf_path}", file=sys.stderr)

    try:
        score = analyze.read_score(str(score_path), cfg)
        perf = performance.select_performance(performance.read_performances(str(perf_path)), args.performance)
        result = process.render_performance(score, perf, cfg)
    except UnknownPerformanceError as e:
        print(f"[cli] ERROR: {e}", file=sys.stderr)
        return 1
    except StructuralInputError as e:
        print(f"[cli] ERROR: malformed input: {e}", file=sys.stderr)
        return 2
    except InternalError as e:
        print(f"[cli] ERROR: internal: {e}", file=sys.stderr)
        return 2

    for w in result.warnings:
        print(f"[render] WARNING {w}", file=sys.stderr)

    out_path = _resolve(args.out)
    try:
        write.write_score(result, str(out_path))
        print(f"[cli] score     -> {out_path}", file=sys.stderr)
        if args.midi_out:
            midi_path = _resolve(args.midi_out)
            write.write_midi(result, str(midi_path))
            print(f"[cli] midi      -> {midi_path}", file=sys.stderr)
    except OSError as e:
        print(f"[cli] ERROR: cannot write output: {e}", file=sys.stderr)
        return 2

    total_notes = sum(len(p.notes) for p in result.score.parts)
    print(f"[cli] Done. performance={perf.name} parts={len(result.score.parts)} "
          f"notes={total_notes} warnings={len(result.warnings)}", file=sys.stderr)
    return 0

def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="mpmrender", description="Score + Performance -> performed score")
    sub = p.add_subparsers(dest="command", required=True)

    r = sub.add_parser("render", help="Render a score with a performance description")
    r.add_argument("score", help="Input score (MSM-like XML)")
    r.add_argument("performance_file", metavar="performance", help="Performance document (MPM-like XML)")
    r.add_argument("out", help="Output score (XML)")
    r.add_argument("--performance", dest="performance", default=None,
                   help="Name of the performance to render (default: first in document)")
    r.add_argument("--config", dest="config", default=None, help="YAML config (defaults applied if omitted)")
    r.add_argument("--midi-out", dest="midi_out", default=None, help="Additionally write a MIDI file")
    r.set_defaults(func=cmd_render)
    return p

def main(argv=None):
    args = build_parser().parse_args(argv)
    try:
        code = args.func(args)
    except Exception:
        traceback.print_exc()
        code = 2
    sys.exit(code)

if __name__ == "__main__":
    main()
