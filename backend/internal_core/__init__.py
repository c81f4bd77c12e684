from .config import PipelineConfig, load_config
from .session_store import InMemorySessionStore, SessionNotFoundError

__all__ = ["PipelineConfig", "load_config", "InMemorySessionStore", "SessionNotFoundError"]
