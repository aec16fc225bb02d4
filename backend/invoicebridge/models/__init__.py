from .host import HostRecord, HostRecordMeta
from .options import Option

__all__ = [
    'HostRecord', 'HostRecordMeta',
    'Option',
]
