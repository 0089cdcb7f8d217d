"""Batch sweep: advance every game whose deadline has passed."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

from nightfall.engine.state import GameRecord, utcnow
from nightfall.io.persistence import create_game_archive, save_game_archive
from nightfall.orchestrator.phase_orchestrator import AdvanceStatus, PhaseOrchestrator

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    advanced: int = 0
    skipped: int = 0
    failed: int = 0
    finished: list[str] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return self.advanced + self.skipped + self.failed

    def summary(self) -> str:
        return (
            f"{self.total} due: {self.advanced} advanced, {self.skipped} skipped, "
            f"{self.failed} failed, {len(self.finished)} finished"
        )


def archive_finished_game(
    orchestrator: PhaseOrchestrator,
    record: GameRecord,
    archive_dir: Path,
) -> Path:
    path = Path(archive_dir) / f"{record.game_id}.json"
    archive = create_game_archive(record, orchestrator.store.list_actions(record.game_id))
    save_game_archive(archive, path)
    return path


def run_sweep(
    orchestrator: PhaseOrchestrator,
    now: Optional[datetime] = None,
    archive_dir: Optional[Path] = None,
) -> SweepReport:
    """Advance all due games once.

    A failing game is logged and counted; it never stops the sweep. The
    next sweep retries it.

    Args:
        orchestrator: Orchestrator bound to the shared store
        now: Sweep time
        archive_dir: Directory for archives of games that finished

    Returns:
        SweepReport with per-outcome counts
    """
    now = now or utcnow()
    report = SweepReport()

    for record in orchestrator.store.list_due(now):
        try:
            result = orchestrator.advance(record, now)
        except Exception as e:
            report.failed += 1
            report.errors[record.game_id] = str(e)
            logger.error(f"Game {record.game_id}: advance failed: {e}")
            continue

        if result.status != AdvanceStatus.ADVANCED:
            report.skipped += 1
            logger.info(f"Game {record.game_id}: {result.status.value}")
            continue

        report.advanced += 1
        logger.info(f"Game {record.game_id}: advanced to {result.record.phase.value}")
        if result.record.is_finished:
            report.finished.append(record.game_id)
            if archive_dir is not None:
                try:
                    path = archive_finished_game(orchestrator, result.record, archive_dir)
                    logger.info(f"Game {record.game_id}: archived to {path}")
                except Exception as e:
                    logger.warning(f"Game {record.game_id}: archive failed: {e}")

    logger.info(f"Sweep complete: {report.summary()}")
    return report
