"""Process-wide service container.

Everything that pushes realtime events receives the same ConnectionManager
instance as its Broadcaster; nothing reaches it through module globals.
``get_services()`` builds the container lazily from configuration, and tests
swap in a fresh one with ``reset_services()``.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from taskhub.config import AppSettings, get_config
from taskhub.db import Database
from taskhub.groups import GroupService, GroupStore
from taskhub.messaging import ContentCipher, MessageStore, MessagingService
from taskhub.realtime import ConnectionManager, PresenceRegistry, SignalChannel
from taskhub.users import UserDirectory

logger = logging.getLogger(__name__)


@dataclass
class Services:
    db: Database
    users: UserDirectory
    manager: ConnectionManager
    presence: PresenceRegistry
    signals: SignalChannel
    groups: GroupService
    messaging: MessagingService


def build_services(db: Database, config: AppSettings) -> Services:
    manager = ConnectionManager()
    users = UserDirectory(db)
    signals = SignalChannel(manager)
    groups = GroupService(
        GroupStore(db),
        users,
        manager,
        restricted_roles=config.messaging.restricted_roles,
    )
    messaging = MessagingService(
        MessageStore(db),
        users,
        groups,
        manager,
        signals,
        ContentCipher(config.secrets.encryption.key),
        config.messaging,
    )
    return Services(
        db=db,
        users=users,
        manager=manager,
        presence=PresenceRegistry(manager),
        signals=signals,
        groups=groups,
        messaging=messaging,
    )


_services: Optional[Services] = None


def get_services() -> Services:
    """Get the process-wide services, building them on first use."""
    global _services
    if _services is None:
        config = get_config()
        _services = build_services(Database.get_instance(config.database.path), config)
        logger.info("[Services] Initialized (db=%s)", _services.db.path)
    return _services


def set_services(services: Optional[Services]) -> None:
    global _services
    _services = services


def reset_services(db_path: str = ":memory:") -> Services:
    """Drop the database singleton and rebuild everything on ``db_path`` (tests)."""
    Database.reset_instance()
    services = build_services(Database.get_instance(db_path), get_config())
    set_services(services)
    return services
