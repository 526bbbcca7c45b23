from .memory import MemoryBackend
from . import paths

__all__ = ["MemoryBackend", "paths"]
