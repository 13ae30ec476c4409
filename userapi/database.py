import logging
import os
import sqlalchemy_utils as sau
from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from userapi.config import cfg, cfgb, cfgsections
from userapi.storage import Storage
from userapi.types import OAuthClient

logger = logging.getLogger(__name__)

alembic_dir = os.path.join(os.path.dirname(__file__), "alembic")

def connect():
    return Storage(cfg("userapi", "connection-string"),
            echo=cfgb("userapi", "debug-sql", False))

def _alembic_cfg(connection):
    config = Config()
    config.set_main_option("script_location", alembic_dir)
    config.attributes["connection"] = connection
    return config

def current_revision(storage):
    with storage.engine.connect() as connection:
        context = MigrationContext.configure(connection)
        return context.get_current_revision()

def head_revision(storage):
    with storage.engine.connect() as connection:
        script = ScriptDirectory.from_config(_alembic_cfg(connection))
        return script.get_current_head()

def migrate(storage, revision="head"):
    current = current_revision(storage)
    logger.info("Upgrading database from %s to %s", current, revision)
    with storage.engine.begin() as connection:
        command.upgrade(_alembic_cfg(connection), revision)

def initdb(storage):
    """
    Creates the database and its tables, marks them as up to date with the
    latest migration and inserts the configured reference clients.
    """
    url = storage.engine.url
    if not sau.database_exists(url):
        logger.info("Creating database %s", url.database)
        sau.create_database(url)
    storage.create_all()
    with storage.engine.begin() as connection:
        command.stamp(_alembic_cfg(connection), "head")
    return seed_clients(storage)

def configured_clients():
    prefix = "userapi::client "
    for section in cfgsections(prefix):
        if not cfg(section, "client-id", "") \
                or not cfg(section, "client-secret", ""):
            logger.warning("Skipping [%s]: client-id and client-secret "
                    "are required", section)
            continue
        yield {
            "client_id": cfg(section, "client-id"),
            "client_secret": cfg(section, "client-secret"),
            "grants": cfg(section, "grants"),
            "redirect_uris": cfg(section, "redirect-uri", ""),
        }

def seed_clients(storage, clients=None):
    """Inserts the given (or configured) clients which do not exist yet."""
    added = 0
    for client in (configured_clients() if clients is None else clients):
        existing = (storage.table(OAuthClient)
                .where(client_id=client["client_id"])
                .count())
        if existing:
            continue
        storage.table(OAuthClient).insert(**client)
        logger.info("Added OAuth client %s", client["client_id"])
        added += 1
    return added
