"""EnviroVoice relay.

Signaling and presence relay for a proximity voice-chat overlay driven by
Minecraft world snapshots. Tracks connected participants, relays WebRTC
negotiation between them, and fans out merged world/voice state.
"""

__version__ = "3.0.0"
