from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional

# Processing phase transitions
PHASE_TRANSITIONS: Dict[str, List[str]] = {
    "idle": ["busy-initial", "busy-followup"],
    "busy-initial": ["idle"],
    "busy-followup": ["idle"],
}

WORKFLOW_PHASES: Dict[str, str] = {
    "initial": "busy-initial",
    "follow-up": "busy-followup",
}


def is_valid_transition(current: str, target: str) -> bool:
    return target in PHASE_TRANSITIONS.get(current, [])


def workflow_for_view(view: str) -> str:
    return "initial" if view == "initial" else "follow-up"


@dataclass
class ProcessingState:
    """Single-flight guard shared by every trigger of one orchestrator."""

    busy: bool = False
    phase: str = "idle"
    request_id: Optional[str] = None

    def acquire(self, workflow: str, request_id: str) -> None:
        target = WORKFLOW_PHASES[workflow]
        if self.busy or not is_valid_transition(self.phase, target):
            raise RuntimeError(f"Cannot start {workflow} processing while {self.phase}")
        self.busy = True
        self.phase = target
        self.request_id = request_id

    def release(self, request_id: Optional[str] = None) -> bool:
        """Return to idle. With a request id, only the matching request may release."""

        if request_id is not None and request_id != self.request_id:
            return False
        self.busy = False
        self.phase = "idle"
        self.request_id = None
        return True
