from .bus import BusConnection, BusDisconnected, ChangeBus, ChangeEvent, RowFilter
from .capture import install_capture

__all__ = ["BusConnection", "BusDisconnected", "ChangeBus", "ChangeEvent", "RowFilter", "install_capture"]
