from .models import EmotionalTone, FragmentContext, MemoryFragment, MemoryStats, RankedFragment
from .store import FragmentStore, ChromaFragmentStore
from .services import MemoryService

__all__ = [
    'EmotionalTone', 'FragmentContext', 'MemoryFragment', 'MemoryStats', 'RankedFragment',
    'FragmentStore', 'ChromaFragmentStore', 'MemoryService'
]
