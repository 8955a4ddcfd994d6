"""Chat channel adapters.

Available adapters:
- whatsapp: WhatsApp HTTP gateway (outbound via REST, inbound via webhook)
- base.RecordingChannel: in-memory channel for tests and dry runs
"""
