"""
Pipeline runner for scoring, playbook processing and action execution.

Single entry point used by the CLI and by schedulers.
"""

import logging
import uuid
from datetime import datetime
from pathlib import Path
from typing import Optional

import pandas as pd

from scoring import BatchScoringResult, ChurnScorer

from .collaborators import Collaborators, build_collaborators
from .config import EngineConfig
from .engine import EngineRunResult, PlaybookEngine
from .executor import ActionExecutor, ExecutionSummary
from .logger import RunLogger
from .models import load_playbooks
from .store import PlaybookStore

logger = logging.getLogger(__name__)

# Columns carried from an upload onto the stored customer record
PASSTHROUGH_COLUMNS = ["plan", "last_login", "usage", "user_stage"]


def read_upload(path: Path | str) -> pd.DataFrame:
    """Read a customer CSV, keeping identifiers as text."""
    return pd.read_csv(path, dtype={"customer_id": str})


class PipelineRunner:
    """
    Wires store, scorer, engine and executor together and logs every run.

    Usage:
        runner = PipelineRunner(EngineConfig.from_yaml("engine.yaml"))

        runner.import_users("owner_1", "customers.csv")
        runner.import_playbooks("playbooks.yaml")

        runner.process("owner_1")   # cron: match and queue
        runner.execute("owner_1")   # cron: drain due actions
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        store: Optional[PlaybookStore] = None,
        collaborators: Optional[Collaborators] = None,
        scorer: Optional[ChurnScorer] = None,
    ):
        """
        Initialize runner.

        Args:
            config: EngineConfig (defaults apply if None)
            store: PlaybookStore; built from config.database_url if None
            collaborators: Side-effect endpoints; built from config if None
            scorer: ChurnScorer with default rules if None
        """
        self.config = config or EngineConfig()
        self.store = store or PlaybookStore(self.config.database_url)
        self.store.create_all()
        self.scorer = scorer or ChurnScorer()
        self.run_logger = RunLogger(Path(self.config.logs_dir))

        self._owns_collaborators = collaborators is None
        self.collaborators = collaborators or build_collaborators(self.config)
        self.executor = ActionExecutor(self.store, self.collaborators, self.config)
        self.engine = PlaybookEngine(self.store, self.config, self.executor)

    def close(self) -> None:
        """Close collaborators this runner built; injected ones belong to the caller."""
        if self._owns_collaborators:
            self.collaborators.close()

    def __enter__(self) -> "PipelineRunner":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def generate_run_id(self) -> str:
        """Generate unique run ID: run_YYYYMMDD_HHMMSS_XXXX"""
        date_str = datetime.now().strftime("%Y%m%d_%H%M%S")
        short_uuid = uuid.uuid4().hex[:4]
        return f"run_{date_str}_{short_uuid}"

    def _logged(self, kind: str, owner_id: Optional[str], fn, report=None):
        run_id = self.generate_run_id()
        started_at = datetime.now()
        try:
            result = fn()
        except Exception as e:
            logger.error(f"Run {run_id} ({kind}) failed: {e}", extra={"run_id": run_id})
            self.run_logger.log_failure(run_id, kind, str(e), owner_id=owner_id)
            raise
        if report is not None:
            results = report(result)
        else:
            results = result.to_dict() if hasattr(result, "to_dict") else result
        self.run_logger.log_run(run_id, kind, started_at, results, owner_id=owner_id)
        logger.info(f"Run {run_id} ({kind}) logged", extra={"run_id": run_id})
        return result

    def score_csv(
        self, path: Path | str, output: Optional[Path | str] = None
    ) -> BatchScoringResult:
        """
        Score a customer CSV, optionally writing the scored rows.

        Args:
            path: Input CSV with a customer_id column
            output: Where to write the scored CSV

        Returns:
            BatchScoringResult
        """
        def _score():
            result = self.scorer.score_batch(read_upload(path))
            if output is not None:
                result.df.to_csv(output, index=False)
            return result

        return self._logged("score", None, _score, report=lambda r: r.analytics())

    def import_users(self, owner_id: str, path: Path | str) -> int:
        """
        Score an upload and store the scored customers for ``owner_id``.

        Returns:
            Number of customer records written
        """
        def _import():
            batch = self.scorer.score_batch(read_upload(path))
            return {"users_written": self.store.upsert_users(
                self._user_rows(owner_id, batch.df)
            )}

        return self._logged("import_users", owner_id, _import)["users_written"]

    @staticmethod
    def _user_rows(owner_id: str, df: pd.DataFrame) -> list[dict]:
        rows = []
        for record in df.to_dict(orient="records"):
            row = {
                "owner_id": owner_id,
                "user_id": record["customer_id"],
                "churn_score": float(record["churn_score"]),
                "risk_level": record["risk_level"],
                "churn_reason": record["churn_reason"],
                "action_recommended": record["action_recommended"],
            }
            email = record.get("customer_email", record.get("email"))
            if isinstance(email, str) and email:
                row["email"] = email
            for column in PASSTHROUGH_COLUMNS:
                value = record.get(column)
                if value is not None and not pd.isna(value):
                    row[column] = str(value) if column == "last_login" else value
            rows.append(row)
        return rows

    def import_playbooks(self, path: Path | str) -> int:
        """Validate and store playbook definitions from YAML."""
        playbooks = load_playbooks(path)
        return self.store.save_playbooks(playbooks)

    def process(
        self,
        owner_id: str,
        playbook_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> EngineRunResult:
        """Run the playbook engine for one owner."""
        return self._logged(
            "process", owner_id,
            lambda: self.engine.run(owner_id, playbook_id=playbook_id, now=now),
        )

    def execute(self, owner_id: str, now: Optional[datetime] = None) -> ExecutionSummary:
        """Run the action executor for one owner."""
        return self._logged(
            "execute", owner_id, lambda: self.executor.run(owner_id, now=now)
        )

    def list_runs(self) -> pd.DataFrame:
        """
        Get summary of all past runs.

        Returns:
            DataFrame with run history
        """
        return self.run_logger.get_summary_dataframe()

