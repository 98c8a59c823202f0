"""
Interception state machine for one relay connection.

States: IDLE → TURN_ARMED → CAPTURING → PROCESSING → IDLE

Transitions and their hooks run synchronously. One inbound event is classified
and acted on without yielding to the event loop, so two events of the same
connection never interleave inside the machine.
"""

import logging
import time
from enum import Enum
from typing import Callable, Dict, List, Optional, Set

logger = logging.getLogger(__name__)


class InterceptState(str, Enum):
    """
    Interception states for one connection.

    IDLE: Events relayed untouched
    TURN_ARMED: RAG engaged for the user utterance in progress
    CAPTURING: Accumulating transcript fragments for the armed turn
    PROCESSING: Retrieval + completion in flight, provider responses suppressed
    """
    IDLE = "IDLE"
    TURN_ARMED = "TURN_ARMED"
    CAPTURING = "CAPTURING"
    PROCESSING = "PROCESSING"


EnterHook = Callable[[], None]
TransitionHook = Callable[[InterceptState, InterceptState], None]


class StateMachine:
    """
    Validated transitions between InterceptStates with enter/transition hooks.

    Only one owner (the turn interceptor) drives a given machine, so the relay
    and the retrieval side-channel never both own the same turn.
    """

    ALLOWED_TRANSITIONS: Dict[InterceptState, Set[InterceptState]] = {
        InterceptState.IDLE: {
            InterceptState.TURN_ARMED,  # Speech started with RAG enabled
        },
        InterceptState.TURN_ARMED: {
            InterceptState.TURN_ARMED,  # Speech restarted, re-arm
            InterceptState.CAPTURING,  # First transcript fragment
            InterceptState.IDLE,  # Empty transcript or rag off
        },
        InterceptState.CAPTURING: {
            InterceptState.TURN_ARMED,  # Speech restarted, re-arm
            InterceptState.PROCESSING,  # Transcript finalized
            InterceptState.IDLE,  # Empty transcript or rag off
        },
        InterceptState.PROCESSING: {
            InterceptState.IDLE,  # Retrieval finished, failed, or rag off
        },
    }

    def __init__(self, initial_state: InterceptState = InterceptState.IDLE):
        """
        Args:
            initial_state: State the machine starts in
        """
        self._current_state = initial_state
        self._previous_state: Optional[InterceptState] = None
        self._history: List[dict] = []

        self._enter_hooks: Dict[InterceptState, List[EnterHook]] = {state: [] for state in InterceptState}
        self._transition_hooks: List[TransitionHook] = []

        self._record(None, initial_state, "initialization")
        logger.debug(f"Intercept state machine created in {initial_state.value}")

    @property
    def current_state(self) -> InterceptState:
        return self._current_state

    @property
    def previous_state(self) -> Optional[InterceptState]:
        return self._previous_state

    @property
    def state_history(self) -> List[dict]:
        """Copy of every accepted transition, oldest first."""
        return list(self._history)

    def can_transition(self, to_state: InterceptState) -> bool:
        return to_state in self.ALLOWED_TRANSITIONS[self._current_state]

    def get_allowed_transitions(self) -> Set[InterceptState]:
        return set(self.ALLOWED_TRANSITIONS[self._current_state])

    def transition(self, to_state: InterceptState, reason: str = "") -> bool:
        """
        Move to `to_state` if the transition table allows it.

        Args:
            to_state: Target state
            reason: Free text kept in the history and the log line

        Returns:
            False (and no state change) if the transition is not allowed
        """
        from_state = self._current_state
        if not self.can_transition(to_state):
            logger.warning(
                f"Rejected intercept transition {from_state.value} → {to_state.value}"
                + (f" ({reason})" if reason else "")
            )
            return False

        self._previous_state = from_state
        self._current_state = to_state
        self._record(from_state, to_state, reason)
        logger.info(
            f"Intercept state {from_state.value} → {to_state.value}"
            + (f" ({reason})" if reason else "")
        )

        for hook in self._enter_hooks[to_state]:
            self._run_hook(hook, f"enter {to_state.value}")
        for hook in self._transition_hooks:
            self._run_hook(lambda: hook(from_state, to_state), "transition")

        return True

    def reset(self, reason: str = "reset") -> bool:
        """
        Force the machine back to IDLE.

        Returns:
            True if the state changed, False if it was already IDLE
        """
        if self._current_state == InterceptState.IDLE:
            return False
        return self.transition(InterceptState.IDLE, reason=reason)

    def register_on_enter(self, state: InterceptState, callback: EnterHook) -> None:
        """Call `callback()` every time `state` is entered."""
        self._enter_hooks[state].append(callback)

    def register_on_transition(self, callback: TransitionHook) -> None:
        """Call `callback(from_state, to_state)` after every accepted transition."""
        self._transition_hooks.append(callback)

    def _record(self, from_state: Optional[InterceptState], to_state: InterceptState, reason: str) -> None:
        self._history.append({
            "from_state": from_state.value if from_state else None,
            "to_state": to_state.value,
            "reason": reason,
            "timestamp": int(time.time() * 1000),
        })

    @staticmethod
    def _run_hook(hook: Callable[[], None], label: str) -> None:
        # A failing hook must not undo a transition that already happened
        try:
            hook()
        except Exception as e:
            logger.error(f"Intercept {label} hook failed: {e}", exc_info=True)

    def __repr__(self) -> str:
        return f"StateMachine(current={self._current_state.value}, previous={self._previous_state})"
