"""
AI Receptionist - Real-Time Call Orchestration Engine

This application answers business phone calls with an AI voice agent. It receives
telephony webhook events, drives a per-call state machine, brokers a live session
with an AI conversation backend, falls back to voicemail when the AI cannot serve
the call, and emits billing and notification triggers when a call ends.

Architecture Overview:
- FastAPI server exposing signed webhook endpoints and a media WebSocket
- One asyncio task per active call, fed by its own queue of typed inputs
- Streaming connection to the AI backend for bidirectional audio/text
- Fixed, backend-independent voicemail fallback

Key Components:
- handlers: Webhook ingress (signature, rate limit, dedup) and media stream handling
- models: Call aggregate, events, wire schemas, call registry and processed event log
- engine: Call state machine, per-call workers, fallback controller, outcome dispatcher
- bot: AI session client, session broker and audio bridge
- services: HTTP clients for tenant config, call log, billing, notification and call control
- call_manager: Routes events to per-call workers and owns their lifecycle

Getting Started:
1. Set up environment variables:
   - WEBHOOK_SECRET: Shared secret used to sign provider webhooks
   - AI_BACKEND_URL / AI_BACKEND_API_KEY: AI conversation backend
   - TELEPHONY_API_URL / TELEPHONY_API_KEY: Provider call-control API
   - PORT, HOST, LOG_LEVEL

2. Start the server:
   ```bash
   python run.py --port 8000
   ```

3. Point the telephony provider's webhooks at:
   - http://your-server:8000/webhooks/telephony
   - http://your-server:8000/webhooks/recording
"""
