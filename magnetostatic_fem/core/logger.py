"""Structured logging for solver runs: rotating text log plus JSONL records."""
from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Any, Callable, Optional

from magnetostatic_fem.fea.results import IterationInfo, NonlinearResult, SolveResult


class StructuredLogger:
    def __init__(self, log_dir: str = "data/logs", level: str = "DEBUG"):
        self._log_dir = log_dir
        os.makedirs(log_dir, exist_ok=True)
        self._setup_app_logger(level)

    def _setup_app_logger(self, level: str) -> None:
        self._app_logger = logging.getLogger("magnetostatic_fem.run." + str(id(self)))
        if not self._app_logger.handlers:
            handler = RotatingFileHandler(
                os.path.join(self._log_dir, "app.log"),
                maxBytes=10 * 1024 * 1024,
                backupCount=5,
            )
            handler.setFormatter(
                logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
            )
            self._app_logger.addHandler(handler)
            self._app_logger.setLevel(getattr(logging, str(level).upper(), logging.DEBUG))

    @property
    def app(self) -> logging.Logger:
        return self._app_logger

    @property
    def log_dir(self) -> str:
        return self._log_dir

    def _write_jsonl(self, filename: str, record: dict) -> None:
        filepath = os.path.join(self._log_dir, filename)
        with open(filepath, "a", encoding="utf-8") as f:
            f.write(json.dumps(record, ensure_ascii=False, default=str) + "\n")

    def log_solve(
        self,
        session_id: str,
        result: SolveResult | NonlinearResult,
        inputs: Optional[dict] = None,
        metadata: Optional[dict] = None,
    ) -> None:
        """Record the outcome of a linear or nonlinear solve in ``solves.jsonl``."""
        outputs: dict[str, Any] = {
            "solver_name": result.solver_name,
            "solve_time_s": result.solve_time_s,
            "n_nodes": int(result.q.shape[0]),
        }
        if isinstance(result, NonlinearResult):
            event_type = "nonlinear_solve.completed"
            outputs.update(
                state=result.state.value,
                converged=result.converged,
                iterations=result.iterations,
                diff=result.diff,
            )
        else:
            event_type = "linear_solve.completed"
            outputs.update(
                solver_iterations=result.solver_iterations,
                residual=result.residual,
            )
        record = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "session_id": session_id,
            "event_type": event_type,
            "inputs": inputs or {},
            "outputs": outputs,
            "metadata": metadata or {},
        }
        self._write_jsonl("solves.jsonl", record)
        self._app_logger.info("[%s] %s: %s", session_id, event_type, outputs)

    def log_iteration(self, session_id: str, info: IterationInfo) -> None:
        record = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "session_id": session_id,
            "event_type": "nonlinear.iteration",
            "iteration": info.iteration,
            "diff": info.diff,
            "elapsed_s": info.elapsed_s,
        }
        self._write_jsonl("iterations.jsonl", record)
        self._app_logger.debug(
            "[%s] iteration %d: diff=%.3e", session_id, info.iteration, info.diff
        )

    def iteration_observer(self, session_id: str) -> Callable[[IterationInfo], None]:
        """Observer for ``NonlinearProblem.solve`` that logs every round."""

        def observe(info: IterationInfo) -> None:
            self.log_iteration(session_id, info)

        return observe
