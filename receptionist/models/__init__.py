"""
Models module for data structures and shared state in the call orchestration engine.

Key components:
- call: The Call aggregate, its states, outcomes and transcript utterances.
- events: Normalized provider CallEvents and the CallInputs consumed by call workers.
- webhook_schemas: Pydantic models for provider webhook payloads.
- media_schemas: Pydantic models for the provider's media stream WebSocket.
- realtime_schemas: Pydantic models for the AI session transport.
- call_registry: Concurrency-safe store of live Call aggregates.
- event_log: Processed event ids for webhook idempotency.

Usage examples:
```python
from receptionist.models import CallRegistry, ProcessedEventLog

registry = CallRegistry()
call, created = registry.get_or_create("v3:abc", tenant_id="biz-1", from_number="+15550100")

event_log = ProcessedEventLog(retention_seconds=24 * 3600)
if event_log.record_if_new("evt-1"):
    ...  # first delivery, process it
```
"""

from receptionist.models.call import Call, CallOutcome, CallState, Speaker, Utterance
from receptionist.models.call_registry import CallRegistry
from receptionist.models.event_log import ProcessedEventLog
from receptionist.models.events import CallEvent, CallEventType, CallInput, InputType
from receptionist.models.realtime_schemas import AgentConfig

__all__ = [
    "AgentConfig",
    "Call",
    "CallEvent",
    "CallEventType",
    "CallInput",
    "CallOutcome",
    "CallRegistry",
    "CallState",
    "InputType",
    "ProcessedEventLog",
    "Speaker",
    "Utterance",
]
