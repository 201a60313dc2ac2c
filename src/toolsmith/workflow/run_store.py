"""Persistence for workflow runs.

The executor only needs "get by id" and "put". Runs are persisted so they can be
resumed or audited; no event log is kept beyond each run's own history.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from pydantic import ValidationError

from .executor import WorkflowRun

logger = logging.getLogger(__name__)


class RunStore(Protocol):
    def get(self, run_id: str) -> WorkflowRun | None: ...

    def put(self, run: WorkflowRun) -> None: ...

    def list(self) -> list[WorkflowRun]: ...


class MemoryRunStore:
    def __init__(self) -> None:
        self._runs: dict[str, WorkflowRun] = {}
        self._lock = threading.Lock()

    def get(self, run_id: str) -> WorkflowRun | None:
        with self._lock:
            run = self._runs.get(run_id)
            return run.model_copy(deep=True) if run is not None else None

    def put(self, run: WorkflowRun) -> None:
        with self._lock:
            self._runs[run.run_id] = run.model_copy(deep=True)

    def list(self) -> list[WorkflowRun]:
        with self._lock:
            runs = [r.model_copy(deep=True) for r in self._runs.values()]
        return sorted(runs, key=lambda r: r.created_at)


@dataclass
class JsonRunStore:
    """JSON-file backed run store (a list of run records)."""

    path: Path

    def __post_init__(self) -> None:
        self._lock = threading.Lock()

    def _load_unlocked(self) -> list[WorkflowRun]:
        if not self.path.exists():
            return []
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning(
                "Run state file is not valid JSON; treating as empty",
                extra={"path": str(self.path)},
            )
            return []
        if not isinstance(raw, list):
            logger.warning(
                "Run state file has unexpected shape; treating as empty",
                extra={"path": str(self.path)},
            )
            return []

        runs: list[WorkflowRun] = []
        for item in raw:
            try:
                runs.append(WorkflowRun.model_validate(item))
            except ValidationError:
                logger.warning(
                    "Skipping malformed run record",
                    extra={"path": str(self.path), "run_id": item.get("run_id")}
                    if isinstance(item, dict)
                    else {"path": str(self.path)},
                )
        return runs

    def _save_unlocked(self, runs: list[WorkflowRun]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = [r.model_dump(mode="json") for r in runs]
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(payload, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
        tmp.replace(self.path)

    def get(self, run_id: str) -> WorkflowRun | None:
        with self._lock:
            for run in self._load_unlocked():
                if run.run_id == run_id:
                    return run
            return None

    def put(self, run: WorkflowRun) -> None:
        with self._lock:
            runs = self._load_unlocked()
            for idx, existing in enumerate(runs):
                if existing.run_id == run.run_id:
                    runs[idx] = run
                    break
            else:
                runs.append(run)
            self._save_unlocked(runs)

    def list(self) -> list[WorkflowRun]:
        with self._lock:
            return sorted(self._load_unlocked(), key=lambda r: r.created_at)
