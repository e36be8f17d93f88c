from .session_memory import SessionRepository

__all__ = ["SessionRepository"]
