"""
Run logging for the playbook pipeline.

Writes one JSON log per engine/executor/scoring run (success or error),
and configures structured JSON output for the standard logging tree.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

import pandas as pd


class JSONFormatter(logging.Formatter):
    """Formatter that dumps records as JSON."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "func": record.funcName,
            "line": record.lineno,
        }
        if hasattr(record, "run_id"):
            log_data["run_id"] = record.run_id
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data)


def setup_logging(level: str = "INFO") -> None:
    """Configure the root logger to use JSON formatting on stdout."""
    root = logging.getLogger()
    root.setLevel(level)

    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())
    root.addHandler(handler)

    # Silence noisy libraries
    logging.getLogger("httpx").setLevel("WARNING")
    logging.getLogger("sqlalchemy.engine").setLevel("WARNING")


class RunLogger:
    """Structured JSON logging for pipeline runs."""

    def __init__(self, logs_dir: Path):
        """
        Initialize logger.

        Args:
            logs_dir: Directory to write log files
        """
        self.logs_dir = Path(logs_dir)
        self.logs_dir.mkdir(parents=True, exist_ok=True)

    def log_run(
        self,
        run_id: str,
        kind: str,
        started_at: datetime,
        results: dict,
        owner_id: Optional[str] = None,
    ) -> Path:
        """
        Log a completed run to a JSON file.

        Args:
            run_id: Unique run ID
            kind: "score", "process" or "execute"
            started_at: When the run started
            results: Counts reported by the run
            owner_id: Tenant the run was scoped to

        Returns:
            Path to log file
        """
        log_entry = {
            "run_id": run_id,
            "kind": kind,
            "owner_id": owner_id,
            "timestamp": started_at.isoformat(),
            "results": results,
            "status": "OK",
        }

        log_path = self.logs_dir / f"{run_id}.json"
        with open(log_path, "w") as f:
            json.dump(log_entry, f, indent=2, default=str)

        return log_path

    def log_failure(
        self,
        run_id: str,
        kind: str,
        error: str,
        owner_id: Optional[str] = None,
    ) -> Path:
        """
        Log a run that raised before completing.

        Returns:
            Path to log file
        """
        log_entry = {
            "run_id": run_id,
            "kind": kind,
            "owner_id": owner_id,
            "timestamp": datetime.now().isoformat(),
            "status": "ERROR",
            "error": error,
        }

        log_path = self.logs_dir / f"{run_id}.json"
        with open(log_path, "w") as f:
            json.dump(log_entry, f, indent=2)

        return log_path

    def get_all_logs(self) -> list[dict]:
        """
        Load all run logs.

        Returns:
            List of log dictionaries, sorted by file name
        """
        logs = []
        for log_file in sorted(self.logs_dir.glob("run_*.json")):
            with open(log_file) as f:
                logs.append(json.load(f))
        return logs

    def get_summary_dataframe(self) -> pd.DataFrame:
        """
        Get summary of all runs as DataFrame.

        Returns:
            DataFrame with one row per run, newest first
        """
        logs = self.get_all_logs()
        if not logs:
            return pd.DataFrame()

        summary = []
        for log in logs:
            entry = {
                "run_id": log["run_id"],
                "kind": log["kind"],
                "owner_id": log.get("owner_id"),
                "timestamp": log["timestamp"],
                "status": log["status"],
            }
            results = log.get("results", {})
            for key in ["matches", "actions_queued", "emails_sent", "executed",
                        "failed", "total_customers"]:
                if key in results:
                    entry[key] = results[key]
            summary.append(entry)

        df = pd.DataFrame(summary)
        return df.sort_values("timestamp", ascending=False)
