"""
Engine module: per-call lifecycle control and terminal side effects.

Key components:
- state_machine: The transition table and CallStateMachine, sole writer of call
  state and outcome.
- call_worker: One asyncio task per call serializing all of its inputs.
- fallback: Backend-independent voicemail flow used when the AI session fails.
- outcome_dispatcher: Exactly-once call record, billing trigger and notification
  publishing with retry and a reconciliation queue.
"""

from receptionist.engine.call_worker import CallWorker
from receptionist.engine.fallback import FallbackController
from receptionist.engine.outcome_dispatcher import OutcomeDispatcher
from receptionist.engine.state_machine import CallStateMachine, EngineContext, transition

__all__ = [
    "CallStateMachine",
    "CallWorker",
    "EngineContext",
    "FallbackController",
    "OutcomeDispatcher",
    "transition",
]
