"""In-process stage execution with dependency ordering."""

from collections import deque
from typing import Any, Callable, Dict, List, Optional
import threading
import time

from ..errors import check_cancelled
from .logger import PipelineLogger


class StageExecutor:
    """Run registered stage functions in dependency order.

    Every stage function is called as ``func(stage_results=...)`` and its
    return value is stored under the stage id. A failing stage is logged
    and re-raised; stages after it are not run.

    Parameters
    ----------
    logger : PipelineLogger, optional
        Logger receiving stage events
    cancel_event : threading.Event, optional
        Checked before each stage

    Example
    -------
    >>> executor = StageExecutor()
    >>> executor.register_stage("metacells", build_metacells)
    >>> executor.register_stage("network", build_network, depends_on=["metacells"])
    >>> results = executor.run()
    """

    def __init__(
        self,
        logger: Optional[PipelineLogger] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.logger = logger
        self.cancel_event = cancel_event
        self.stages: Dict[str, Dict[str, Any]] = {}
        self.completed_stages: List[str] = []
        self.durations: Dict[str, float] = {}

    def register_stage(
        self,
        stage_id: str,
        func: Callable,
        depends_on: Optional[List[str]] = None,
        name: Optional[str] = None,
    ) -> None:
        """Register a stage function."""
        if stage_id in self.stages:
            raise ValueError(f"Stage '{stage_id}' is already registered")
        self.stages[stage_id] = {
            "func": func,
            "depends_on": depends_on or [],
            "name": name or stage_id,
        }

    def _get_execution_order(self) -> List[str]:
        """Topological order of stages, registration order among peers."""
        for stage_id, stage in self.stages.items():
            unknown = [d for d in stage["depends_on"] if d not in self.stages]
            if unknown:
                raise ValueError(f"Stage '{stage_id}' depends on unknown stages {unknown}")

        in_degree = {sid: len(stage["depends_on"]) for sid, stage in self.stages.items()}
        queue = deque([sid for sid, degree in in_degree.items() if degree == 0])
        order = []
        while queue:
            stage_id = queue.popleft()
            order.append(stage_id)
            for other_id, other_stage in self.stages.items():
                if stage_id in other_stage["depends_on"]:
                    in_degree[other_id] -= 1
                    if in_degree[other_id] == 0:
                        queue.append(other_id)

        if len(order) != len(self.stages):
            raise ValueError("Circular dependency detected")
        return order

    def run(self) -> Dict[str, Any]:
        """Execute all registered stages.

        Returns
        -------
        Dict[str, Any]
            Map of stage_id to stage result
        """
        results: Dict[str, Any] = {}
        for stage_id in self._get_execution_order():
            stage = self.stages[stage_id]
            check_cancelled(self.cancel_event, f"Stage {stage_id}")
            if self.logger:
                self.logger.log_stage_start(stage_id, stage["name"])

            start_time = time.time()
            try:
                results[stage_id] = stage["func"](stage_results=results)
            except Exception as e:
                if self.logger:
                    self.logger.log_stage_error(stage_id, str(e))
                raise

            self.durations[stage_id] = time.time() - start_time
            self.completed_stages.append(stage_id)
            if self.logger:
                self.logger.log_stage_complete(stage_id, self.durations[stage_id])
        return results
