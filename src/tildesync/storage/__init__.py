from .kv_store import KeyValueStore, DEFAULT_MAX_BYTES

__all__ = ['KeyValueStore', 'DEFAULT_MAX_BYTES']
