from .kv_store import HostRecordInfo, KeyValueStore, PostMetaStore
from .options import DbOptionStore, OptionStore

__all__ = [
    'HostRecordInfo', 'KeyValueStore', 'PostMetaStore',
    'DbOptionStore', 'OptionStore',
]
