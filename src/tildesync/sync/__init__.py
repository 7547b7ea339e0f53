from .coordinator import SyncCoordinator, build_coordinator
from .events import EventType, SyncEvent, SyncNotifier

__all__ = ['SyncCoordinator', 'build_coordinator', 'EventType', 'SyncEvent', 'SyncNotifier']
