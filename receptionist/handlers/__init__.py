"""
Handlers module for inbound traffic from the telephony provider.

Key components:
- webhook_handlers: Signature verification, parsing, rate limiting and
  deduplication of call-control webhooks (WebhookIngress).
- rate_limiter: Sliding-window counters per source identity.
- media_handlers: The provider's media stream WebSocket wrapped as the caller leg
  of the audio bridge.
"""
