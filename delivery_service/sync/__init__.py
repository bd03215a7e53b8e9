from .admin import AdminSynchronizer
from .eater import EaterSynchronizer
from .notifications import NotificationFeed
from .partner import NO_LONGER_AVAILABLE, PartnerSynchronizer
from .readers import HttpStoreReader, LocalActions, LocalStoreReader

__all__ = [
    "AdminSynchronizer",
    "EaterSynchronizer",
    "NotificationFeed",
    "PartnerSynchronizer",
    "NO_LONGER_AVAILABLE",
    "HttpStoreReader",
    "LocalActions",
    "LocalStoreReader",
]
