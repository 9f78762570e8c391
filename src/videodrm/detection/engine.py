"""Aggregates independent heuristics into one SecurityViolationReport."""

from __future__ import annotations

import logging
import threading
from typing import Dict, Iterable, List, Optional

from ..config import DRMConfig
from ..errors import DetectionHeuristicError
from .base import ClientEnvironment, DetectionHeuristic, SecurityViolationReport, Violation
from .heuristics import default_heuristics

LOGGER = logging.getLogger(__name__)


class AntiPiracyEngine:
    """Runs every registered heuristic against an environment snapshot.

    A heuristic that raises is recorded as an error and counts as "no
    violation". The engine reports; it never revokes sessions.
    """

    def __init__(self, heuristics: Optional[Iterable[DetectionHeuristic]] = None):
        self._heuristics: Dict[str, DetectionHeuristic] = {}
        self._lock = threading.Lock()
        for heuristic in heuristics if heuristics is not None else default_heuristics():
            self.register(heuristic)

    @classmethod
    def from_config(cls, config: DRMConfig) -> "AntiPiracyEngine":
        return cls(default_heuristics(
            framerate_threshold=config.framerate_threshold,
            framerate_windows=config.framerate_windows,
            devtools_threshold=config.devtools_threshold,
        ))

    def register(self, heuristic: DetectionHeuristic) -> DetectionHeuristic:
        with self._lock:
            if heuristic.name in self._heuristics:
                raise ValueError(f"Heuristic already registered: {heuristic.name}")
            self._heuristics[heuristic.name] = heuristic
        return heuristic

    def unregister(self, name: str) -> bool:
        with self._lock:
            return self._heuristics.pop(name, None) is not None

    @property
    def heuristics(self) -> List[DetectionHeuristic]:
        with self._lock:
            return list(self._heuristics.values())

    def scan(self, env: ClientEnvironment) -> SecurityViolationReport:
        report = SecurityViolationReport()
        for heuristic in self.heuristics:
            try:
                message = self._run(heuristic, env)
            except DetectionHeuristicError as e:
                LOGGER.debug("%s", e.message)
                report.errors.append(heuristic.name)
                continue
            if message:
                report.violations.append(Violation(heuristic.name, message, heuristic.advisory))
        if not report.is_secure:
            LOGGER.warning("Security violations detected: %s", report.messages)
        elif report.violations:
            LOGGER.info("Advisory security findings: %s", report.messages)
        return report

    @staticmethod
    def _run(heuristic: DetectionHeuristic, env: ClientEnvironment) -> Optional[str]:
        try:
            return heuristic.check(env)
        except Exception as e:
            raise DetectionHeuristicError(heuristic.name, e) from e

    def reset(self) -> None:
        for heuristic in self.heuristics:
            heuristic.reset()
