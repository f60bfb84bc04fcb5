from .config import Config
from .memory import MemoryService, MemoryFragment, FragmentContext, EmotionalTone
from .server import create_app

__all__ = [
    'Config',
    'MemoryService', 'MemoryFragment', 'FragmentContext', 'EmotionalTone',
    'create_app'
]
