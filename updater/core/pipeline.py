"""Ordered convergence stages and run reporting.

A stage is a callable taking the section context. Stages read fresh state
from their collaborator at entry, so stopping after any stage leaves the
external system in the same state a full run would have reached at that
point, and the next run can pick up from there.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, Generic, List, Optional, Sequence, TypeVar

from .exceptions import ReconcileCancelled

logger = logging.getLogger(__name__)

C = TypeVar("C")


@dataclass
class ReportedError:
    """One failure kept for the end-of-run report."""
    section: str
    entity: str
    error: BaseException

    def chain(self) -> List[BaseException]:
        errors = [self.error]
        current = self.error
        while current.__cause__ is not None or current.__context__ is not None:
            current = current.__cause__ or current.__context__
            if current in errors:
                break
            errors.append(current)
        return errors

    def format(self) -> str:
        lines = [f"[{self.section}] {self.entity}"]
        for depth, error in enumerate(self.chain()):
            lines.append(f"  {depth}: {type(error).__name__}: {error}")
        return "\n".join(lines)


@dataclass
class RunReport:
    """Errors collected during a run; a run with errors exits non-zero."""
    errors: List[ReportedError] = field(default_factory=list)

    def add(self, section: str, entity: str, error: BaseException) -> None:
        self.errors.append(ReportedError(section, entity, error))

    @property
    def ok(self) -> bool:
        return not self.errors

    def format(self) -> str:
        return "\n".join(error.format() for error in self.errors)


def check_cancelled(cancel: Optional[threading.Event]) -> None:
    """Raise when cancellation was requested; called at entity boundaries."""
    if cancel is not None and cancel.is_set():
        raise ReconcileCancelled("cancellation requested, stopping before next mutation")


@dataclass(frozen=True)
class Stage(Generic[C]):
    name: str
    run: Callable[[C], None]


class Pipeline(Generic[C]):
    """Stages executed strictly in declared order."""

    def __init__(self, name: str, stages: Sequence[Stage[C]]):
        names = [stage.name for stage in stages]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"Duplicate stage name(s) in pipeline '{name}': {duplicates}")
        self.name = name
        self.stages = tuple(stages)

    @property
    def stage_names(self) -> List[str]:
        return [stage.name for stage in self.stages]

    def run(self, context: C) -> None:
        self._run(context, self.stages)

    def stop_after(self, context: C, stage_name: str) -> None:
        """Run every stage up to and including ``stage_name``.

        Raises:
            ValueError: if ``stage_name`` is not part of this pipeline
        """
        if stage_name not in self.stage_names:
            raise ValueError(
                f"Unknown stage '{stage_name}' for pipeline '{self.name}' (known: {self.stage_names})"
            )
        index = self.stage_names.index(stage_name)
        self._run(context, self.stages[: index + 1])

    def _run(self, context: C, stages: Sequence[Stage[C]]) -> None:
        for stage in stages:
            logger.info(f"[{self.name}] stage '{stage.name}' START")
            stage.run(context)
            logger.info(f"[{self.name}] stage '{stage.name}' END")
