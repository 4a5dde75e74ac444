from .app import create_app
from .dispatcher import Dispatcher
from .notifications import NotificationBroadcaster
from .provider import CapabilityProvider
from .session_registry import Session, SessionRegistry
from .shutdown import ShutdownCoordinator

__all__: list[str] = [
    "create_app",
    "CapabilityProvider",
    "Dispatcher",
    "NotificationBroadcaster",
    "Session",
    "SessionRegistry",
    "ShutdownCoordinator",
]
