"""
Shared module used by the WebSocket gateway, domain publishers and the client SDK.

STRUCTURE:
- shared.config: settings.py (pydantic-settings), logging.py (structured logging)
- shared.security: roles.py (role order, Principal), auth.py (JWT verification)
- shared.infrastructure.events: event taxonomy, envelopes, channels, routing,
  publisher, push side channel, transports, connection counter
- shared.utils: exceptions.py

IMPORT EXAMPLES:
    from shared.config.settings import settings
    from shared.security.roles import Role, Principal
    from shared.infrastructure.events import EventType, EventEnvelope, Publisher
"""
