from __future__ import annotations

import argparse
import json
import logging
import math
import sys
from pathlib import Path
from typing import Any, Dict, List

from temporal_memory.config import load_settings
from temporal_memory.errors import ConsolidationInProgressError
from temporal_memory.memory.dreams import DreamMode
from temporal_memory.memory.system import TemporalMemorySystem

log = logging.getLogger("temporal_memory")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Temporal memory maintenance tool")
    parser.add_argument("--snapshot", required=True, help="JSON snapshot produced by export_state()")
    parser.add_argument("--env-file", default=None, help="Optional .env file with TEMPORAL_MEMORY_* settings")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log at DEBUG level")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("stats", help="Print store statistics")

    consolidate = sub.add_parser("consolidate", help="Run one dream consolidation cycle")
    consolidate.add_argument("--mode", choices=[m.value for m in DreamMode], default=DreamMode.STANDARD.value)

    sub.add_parser("prune", help="Remove forgotten episodes")

    search = sub.add_parser("search", help="Similarity search over the snapshot")
    search.add_argument("query")
    search.add_argument("--top-k", type=int, default=5)
    search.add_argument("--depth", type=int, default=0, help="Chain search depth (0 = plain search)")
    return parser


def load_snapshot(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {"episodes": []}
    return json.loads(path.read_text(encoding="utf-8"))


def save_snapshot(path: Path, state: Dict[str, Any]) -> None:
    path.write_text(json.dumps(state, indent=2, default=str), encoding="utf-8")


def _json_safe(value: Any) -> Any:
    if isinstance(value, float) and math.isinf(value):
        return None
    return value


def main(argv: List[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = load_settings(args.env_file)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[logging.StreamHandler(sys.stderr)],
    )

    path = Path(args.snapshot)
    try:
        state = load_snapshot(path)
    except (OSError, ValueError) as exc:
        log.error("Cannot read snapshot %s: %s", path, exc)
        return 1

    system = TemporalMemorySystem(settings)
    loaded = system.import_state(state)
    log.debug("Loaded %d episodes from %s", loaded, path)

    if args.command == "stats":
        stats = system.stats()
        print(json.dumps({k: _json_safe(v) for k, v in stats.items()}, indent=2))
        return 0

    if args.command == "search":
        if args.depth > 0:
            results = system.chain_search(args.query, depth=args.depth, branch_factor=args.top_k)
        else:
            results = system.search(args.query, top_k=args.top_k)
        for r in results:
            print(f"{r.score:.3f} hop={r.hop_depth} {r.episode_id} [{', '.join(r.payload.context)}]")
        return 0

    if args.command == "consolidate":
        try:
            report = system.dream_consolidate(args.mode)
        except ConsolidationInProgressError as exc:
            log.error("%s", exc)
            return 2
        print(
            "mode={mode} scanned={scanned} strengthened={strengthened} associations={assoc} "
            "pruned={pruned} insights={insights} duration={duration:.2f}s".format(
                mode=report.mode.value,
                scanned=report.scanned,
                strengthened=report.strengthened,
                assoc=report.associations_created,
                pruned=report.pruned,
                insights=len(report.insights),
                duration=report.duration_sec,
            )
        )
        for insight in report.insights:
            print(f"  {insight.kind}: {insight.description}")
    elif args.command == "prune":
        print(f"pruned={system.prune()}")

    save_snapshot(path, system.export_state())
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
