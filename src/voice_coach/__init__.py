"""Voice coach: a guided voice-conversation client.

mic -> STT -> (safety classifier || response orchestrator) -> TTS -> speaker,
with music suggestions and a durable conversation log on the side.
"""

__version__ = "0.1.0"
