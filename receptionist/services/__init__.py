"""
Services module for external collaborator integrations.

Key components:
- http_service: Shared httpx plumbing (base URL, bearer token, timeout, error mapping).
- collaborators: Tenant configuration, call log, billing and notification clients.
- telephony: Provider call-control commands (answer, speak, record, hang up).

A client whose base URL is not configured logs and skips its calls, so the engine
can run locally with only the webhook secret and the AI backend configured.

Usage examples:
```python
from receptionist.services.collaborators import NotificationService

notifications = NotificationService("https://notify.internal", token="...")
await notifications.notify("biz-1", "high", "AI unavailable, call sent to voicemail")
await notifications.aclose()
```
"""
