"""Command line entry point: run analyses and read the run history."""

from __future__ import annotations

import argparse
import json
import sys
from typing import Any, Optional, Sequence

from .config import Settings
from .errors import AppError
from .logging import setup_logging
from survey_risk.db.repository import SQLiteRepository


def _print_json(obj: Any) -> None:
    print(json.dumps(obj, ensure_ascii=False, indent=2))


def main(argv: Optional[Sequence[str]] = None) -> int:
    p = argparse.ArgumentParser(prog="survey-risk", description="Survey scoring and incremental risk analysis")
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("init-db", help="Create the database tables")

    ap = sub.add_parser("analyze", help="Analyze submissions not covered by an earlier run")
    ap.add_argument("counselor_id")

    hp = sub.add_parser("history", help="List a counselor's analysis runs")
    hp.add_argument("counselor_id")

    sp = sub.add_parser("show", help="Show one analysis run")
    sp.add_argument("counselor_id")
    sp.add_argument("run_id")

    args = p.parse_args(argv)

    settings = Settings.from_env()
    setup_logging(settings.log_level, settings.log_json)

    repo = SQLiteRepository(settings.db_path)

    if args.cmd == "init-db":
        repo.init_schema()
        print(f"Schema applied to {settings.db_path}")
        return 0

    try:
        if args.cmd == "analyze":
            # Deferred: pulls in the LLM client stack.
            from survey_risk.workflows.analysis import AnalysisService

            run = AnalysisService(settings, repo=repo).analyze(args.counselor_id)
            _print_json(run.to_dict())
            return 0

        if args.cmd == "history":
            repo.get_counselor(args.counselor_id)
            _print_json([r.to_dict() for r in repo.list_analysis_runs(args.counselor_id)])
            return 0

        if args.cmd == "show":
            repo.get_counselor(args.counselor_id)
            _print_json(repo.get_analysis_run(args.counselor_id, args.run_id).to_dict())
            return 0
    except AppError as e:
        print(json.dumps(e.details(), ensure_ascii=False), file=sys.stderr)
        return 1

    return 2


if __name__ == "__main__":
    raise SystemExit(main())
