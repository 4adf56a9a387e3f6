"""
Match creation wizard controller.

The step list is derived from (activity type, game mode) every time it is
needed, so a step count is never stored or special-cased:

    individual activity            Category → Location → Schedule → Equipment
    team activity, individual mode Category → GameSettings → … → Equipment
    team activity, team mode       … → Equipment → Review

Positions are 1-based. `next()` validates the step being left through the
step gate; `prev()` never validates.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional

from matchbot.models.models import ActivityType
from matchbot.services.draft_store import (
    GameMode,
    MatchDraft,
    MatchDraftStore,
    apply_activity_change,
)
from matchbot.services.step_gate import StepKind, validate

logger = logging.getLogger(__name__)


def step_sequence(activity_type: str, game_mode: GameMode) -> List[StepKind]:
    steps = [StepKind.CATEGORY, StepKind.LOCATION, StepKind.SCHEDULE, StepKind.EQUIPMENT]
    if ActivityType.is_team(activity_type):
        steps.insert(1, StepKind.GAME_SETTINGS)
        if game_mode == GameMode.TEAM:
            steps.append(StepKind.REVIEW)
    return steps


@dataclass
class WizardState:
    current_step: int
    total_steps:  int
    steps:        List[StepKind]
    draft:        MatchDraft

    @property
    def current_kind(self) -> StepKind:
        return self.steps[self.current_step - 1]

    @property
    def is_last(self) -> bool:
        return self.current_step == self.total_steps


@dataclass
class StepResult:
    """
    Outcome of one wizard transition.

    `reason` is set when the transition was refused; `submitted` is True only
    when the final step passed and the draft was handed to submission.
    """
    state:     WizardState
    reason:    Optional[str] = None
    submitted: bool = False

    @property
    def ok(self) -> bool:
        return self.reason is None


class WizardController:
    """Drives one organizer's draft through the step sequence."""

    def __init__(
        self,
        store: MatchDraftStore,
        current_step: int = 1,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._store = store
        self._clock = clock
        self._current = 1
        self._clamp(current_step)

    # ── Derived ───────────────────────────────────────────────────────────────

    @property
    def draft(self) -> MatchDraft:
        return self._store.draft

    @property
    def steps(self) -> List[StepKind]:
        return step_sequence(self.draft.activity_type, self.draft.game_mode)

    @property
    def total_steps(self) -> int:
        return len(self.steps)

    @property
    def current_step(self) -> int:
        return self._current

    @property
    def current_kind(self) -> StepKind:
        return self.steps[self._current - 1]

    def state(self) -> WizardState:
        steps = self.steps
        return WizardState(
            current_step=self._current,
            total_steps=len(steps),
            steps=steps,
            draft=self.draft,
        )

    def _clamp(self, step: int) -> None:
        self._current = max(1, min(step, self.total_steps))

    # ── Transitions ───────────────────────────────────────────────────────────

    def next(self) -> StepResult:
        """Validate the current step and advance; on the last step, submit."""
        if self._current == self.total_steps:
            return self.submit()

        reason = validate(self.current_kind, self.draft, self._clock())
        if reason is not None:
            return StepResult(self.state(), reason=reason)
        self._current += 1
        return StepResult(self.state())

    def prev(self) -> StepResult:
        if self._current > 1:
            self._current -= 1
        return StepResult(self.state())

    def submit(self) -> StepResult:
        """
        Re-validate every step in order; the first failure refuses submission
        and leaves the wizard on the last step.
        """
        now = self._clock()
        for kind in self.steps:
            reason = validate(kind, self.draft, now)
            if reason is not None:
                self._current = self.total_steps
                logger.debug("Draft %s submit refused at %s: %s", self.draft.draft_id, kind.value, reason)
                return StepResult(self.state(), reason=reason)
        self._current = self.total_steps
        return StepResult(self.state(), submitted=True)

    def change_activity(self, activity_type: str) -> WizardState:
        apply_activity_change(self.draft, activity_type)
        self._clamp(self._current)
        return self.state()

    def change_game_mode(self, game_mode: GameMode) -> WizardState:
        self._store.set_game_mode(game_mode)
        self._clamp(self._current)
        return self.state()
