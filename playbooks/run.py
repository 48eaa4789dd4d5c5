#!/usr/bin/env python3
"""
CLI entry point for the churn playbook pipeline.

Usage:
    # Score a customer export
    python -m playbooks.run score customers.csv --output scored.csv

    # Load data for an owner
    python -m playbooks.run import-users customers.csv --owner owner_1
    python -m playbooks.run import-playbooks playbooks.yaml

    # Scheduled jobs
    python -m playbooks.run --config engine.yaml process --owner owner_1
    python -m playbooks.run --config engine.yaml execute --owner owner_1

    # Run history
    python -m playbooks.run runs
"""

import argparse
import sys
from pathlib import Path

from .config import EngineConfig
from .logger import setup_logging
from .models import PlaybookValidationError
from .runner import PipelineRunner


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Churn scoring and retention playbook pipeline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m playbooks.run score customers.csv --output scored.csv
  python -m playbooks.run import-users customers.csv --owner owner_1
  python -m playbooks.run import-playbooks playbooks.yaml
  python -m playbooks.run process --owner owner_1
  python -m playbooks.run execute --owner owner_1
  python -m playbooks.run runs
        """,
    )
    parser.add_argument(
        "--config",
        help="Path to engine YAML config",
    )

    sub = parser.add_subparsers(dest="command")

    score = sub.add_parser("score", help="Score a customer CSV")
    score.add_argument("csv", help="Customer CSV with a customer_id column")
    score.add_argument("--output", help="Write scored rows to this CSV")

    users = sub.add_parser("import-users", help="Score a CSV and store it for an owner")
    users.add_argument("csv", help="Customer CSV with a customer_id column")
    users.add_argument("--owner", required=True, help="Owner (tenant) ID")

    playbooks = sub.add_parser("import-playbooks", help="Load playbook definitions")
    playbooks.add_argument("yaml", help="Playbook YAML file")

    process = sub.add_parser("process", help="Match users and queue playbook actions")
    process.add_argument("--owner", required=True, help="Owner (tenant) ID")
    process.add_argument("--playbook-id", help="Run one playbook, even if inactive")

    execute = sub.add_parser("execute", help="Execute due queued actions")
    execute.add_argument("--owner", required=True, help="Owner (tenant) ID")

    sub.add_parser("runs", help="List past runs")

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    if args.config:
        config_path = Path(args.config)
        if not config_path.exists():
            print(f"Config not found: {args.config}")
            return 1
        config = EngineConfig.from_yaml(config_path)
    else:
        config = EngineConfig()

    setup_logging(config.log_level)
    with PipelineRunner(config) as runner:
        return _dispatch(args, runner)


def _dispatch(args, runner: PipelineRunner) -> int:
    if args.command == "runs":
        df = runner.list_runs()
        if df.empty:
            print("No runs found.")
        else:
            print(df.to_string(index=False))
        return 0

    try:
        if args.command == "score":
            result = runner.score_csv(args.csv, output=args.output)
            print(result.summary().to_string())
            if args.output:
                print(f"\nScored rows saved to: {args.output}")

        elif args.command == "import-users":
            count = runner.import_users(args.owner, args.csv)
            print(f"Imported {count} users for owner {args.owner}")

        elif args.command == "import-playbooks":
            count = runner.import_playbooks(args.yaml)
            print(f"Imported {count} playbooks")

        elif args.command == "process":
            result = runner.process(args.owner, playbook_id=args.playbook_id)
            print(result.summary())

        elif args.command == "execute":
            summary = runner.execute(args.owner)
            print(summary.summary())

    except (FileNotFoundError, PlaybookValidationError, ValueError) as e:
        print(f"ERROR: {e}")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
