"""
PipelineRun model — one execution of the discovery-to-listing pipeline.

`logs` and `results.errors` are append-only; helpers below always assign a new
list/dict so SQLAlchemy sees the change on JSON columns. Once a run reaches a
terminal status it refuses further writes.
"""

from datetime import datetime, timezone

from sqlalchemy import String, Integer, DateTime, func
from sqlalchemy.orm import Mapped, mapped_column

from shopflow.database import Base, JSONType

RUN_TYPES = ("full", "trend", "supplier", "enrich", "competitor")
TRIGGERS = ("manual", "webhook", "cron", "agent-command")
ACTIVE_STATUSES = ("queued", "running")
TERMINAL_STATUSES = ("completed", "failed")

# Value held in `active_slot` while a run is queued/running. The column is
# unique, so a second concurrent insert fails at the database.
ACTIVE_SLOT = "active"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def empty_results() -> dict:
    return {
        "discovered": 0,
        "validated": 0,
        "rejected": 0,
        "listed": 0,
        "auto_listed": 0,
        "errors": [],
    }


class PipelineRun(Base):
    __tablename__ = "pipeline_runs"

    id: Mapped[int] = mapped_column(primary_key=True)
    run_id: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    type: Mapped[str] = mapped_column(String(20), default="full")
    status: Mapped[str] = mapped_column(String(20), default="queued", index=True)  # queued, running, completed, failed
    triggered_by: Mapped[str] = mapped_column(String(20), default="manual")
    active_slot: Mapped[str | None] = mapped_column(String(10), unique=True, nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    config: Mapped[dict] = mapped_column(JSONType, default=dict)
    logs: Mapped[list] = mapped_column(JSONType, default=list)
    results: Mapped[dict] = mapped_column(JSONType, default=empty_results)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def _ensure_mutable(self) -> None:
        if self.is_terminal:
            raise RuntimeError(
                f"Pipeline run {self.run_id} is {self.status} and can no longer be modified"
            )

    def add_log(self, level: str, message: str) -> None:
        self._ensure_mutable()
        entry = {"level": level, "message": message, "timestamp": utcnow().isoformat()}
        self.logs = [*(self.logs or []), entry]

    def record_error(self, stage: str, message: str) -> None:
        self._ensure_mutable()
        results = dict(self.results or empty_results())
        entry = {"stage": stage, "message": message, "timestamp": utcnow().isoformat()}
        results["errors"] = [*results.get("errors", []), entry]
        self.results = results

    def set_result(self, key: str, value: int) -> None:
        self._ensure_mutable()
        results = dict(self.results or empty_results())
        results[key] = value
        self.results = results

    def mark_running(self) -> None:
        self._ensure_mutable()
        self.status = "running"
        self.started_at = self.started_at or utcnow()

    def finish(self, status: str, duration_ms: int) -> None:
        """Move to a terminal status. Only ever called once per run."""
        if status not in TERMINAL_STATUSES:
            raise ValueError(f"Not a terminal status: {status}")
        self._ensure_mutable()
        self.status = status
        self.completed_at = utcnow()
        self.duration_ms = duration_ms
        self.active_slot = None

    def summary(self) -> dict:
        return {
            "run_id": self.run_id,
            "type": self.type,
            "status": self.status,
            "triggered_by": self.triggered_by,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_ms": self.duration_ms,
            "results": self.results,
        }
