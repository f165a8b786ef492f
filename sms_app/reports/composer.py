"""
Report composer: turns a report selection into a view model.

States run idle -> loading -> ready | failed. Every activation takes a new
generation number and only the newest generation may settle the view, so a
slow superseded fetch can never overwrite fresher data.
"""
import enum
import logging
import threading
from dataclasses import dataclass, replace
from typing import Any, Optional

from ..errors import DataServiceError, ValidationError
from .catalog import REPORTS, get_report
from .periods import ReportParams, resolve_params

logger = logging.getLogger(__name__)

FETCH_FAILED_MESSAGE = "Could not load the report data. Please try again."
BUILD_FAILED_MESSAGE = "The report could not be built."


class ReportState(str, enum.Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


@dataclass(frozen=True)
class ReportView:
    state: ReportState = ReportState.IDLE
    report_type: Optional[str] = None
    params: Optional[ReportParams] = None
    data: Any = None
    error: Optional[str] = None
    generation: int = 0

    def as_dict(self):
        report = REPORTS.get(self.report_type) if self.report_type else None
        return {
            "state": self.state.value,
            "report_type": self.report_type,
            "title": report.title if report else None,
            "params": self.params.as_dict() if self.params else None,
            "data": self.data,
            "error": self.error,
            "generation": self.generation,
        }


class ReportComposer:
    """Holds the view model for one report panel.

    With an executor, ``activate`` submits the fetch and returns the Future;
    without one the fetch runs inline and the settled view is returned.
    """

    def __init__(self, service, executor=None, today=None):
        self.service = service
        self.executor = executor
        self.today = today
        self._lock = threading.Lock()
        self._generation = 0
        self._selection = None
        self._view = ReportView()

    @property
    def view(self) -> ReportView:
        with self._lock:
            return self._view

    @property
    def state(self) -> ReportState:
        return self.view.state

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    def activate(self, report_type, **params):
        # Validation happens before any state change or fetch
        report = get_report(report_type)
        resolved = resolve_params(report.params_kind, params, today=self.today)
        with self._lock:
            self._generation += 1
            gen = self._generation
            self._selection = (report.name, dict(params))
            self._view = ReportView(ReportState.LOADING, report.name, resolved, generation=gen)
        logger.debug("Report %s generation %d loading %s", report.name, gen, resolved.as_dict())
        if self.executor is None:
            return self._run(report, resolved, gen)
        return self.executor.submit(self._run, report, resolved, gen)

    def update(self, **params):
        """Change some parameters of the current report and re-fetch."""
        name, current = self._current_selection()
        merged = dict(current)
        merged.update(params)
        return self.activate(name, **merged)

    def refresh(self):
        name, current = self._current_selection()
        return self.activate(name, **current)

    def _current_selection(self):
        with self._lock:
            selection = self._selection
        if selection is None:
            raise ValidationError("No report selected", "report_type")
        return selection

    def _run(self, report, params, gen):
        try:
            raw = report.fetch(self.service, params)
        except DataServiceError as e:
            logger.warning("Report %s generation %d fetch failed: %s", report.name, gen, e)
            return self._settle(gen, ReportState.FAILED, error=FETCH_FAILED_MESSAGE)

        try:
            data = report.aggregate(raw, params)
        except Exception:
            logger.exception("Report %s generation %d could not be aggregated", report.name, gen)
            return self._settle(gen, ReportState.FAILED, error=BUILD_FAILED_MESSAGE)
        return self._settle(gen, ReportState.READY, data=data)

    def _settle(self, gen, state, data=None, error=None) -> ReportView:
        with self._lock:
            if gen != self._generation:
                logger.debug("Discarding stale report result (generation %d, current %d)", gen, self._generation)
                return self._view
            self._view = replace(self._view, state=state, data=data, error=error)
            return self._view
