from .reconcile import RoomSyncClient
from .transport import RoomApiTransport, error_from_response

__all__ = ["RoomSyncClient", "RoomApiTransport", "error_from_response"]
