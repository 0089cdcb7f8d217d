"""Phase orchestration: claim protocol, transitions and executors."""

from nightfall.orchestrator.actions import ActionService
from nightfall.orchestrator.election import ElectionMachine, ElectionProgress
from nightfall.orchestrator.events import EventLog
from nightfall.orchestrator.phase_orchestrator import (
    AdvanceResult,
    AdvanceStatus,
    EventSink,
    PhaseOrchestrator,
)
from nightfall.orchestrator.sweep import SweepReport, run_sweep
from nightfall.orchestrator.transitions import PhaseMachine, Transition

__all__ = [
    "ActionService",
    "AdvanceResult",
    "AdvanceStatus",
    "ElectionMachine",
    "ElectionProgress",
    "EventLog",
    "EventSink",
    "PhaseMachine",
    "PhaseOrchestrator",
    "SweepReport",
    "Transition",
    "run_sweep",
]
