"""
Table-scoped access to the relational store.

A Storage owns the engine and the (thread-scoped) session. It is built once
at startup and handed to the repositories which need it.
"""
import copy
import logging
from contextlib import contextmanager
from sqlalchemy import create_engine, delete, event, func, insert, select
from sqlalchemy.engine import make_url
from sqlalchemy.orm import scoped_session, sessionmaker
from sqlalchemy.pool import StaticPool
from userapi.fields import snake_case
from userapi.types import Base, field_maps

logger = logging.getLogger(__name__)

def _sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()

class Storage:
    def __init__(self, connection_string, echo=False):
        url = make_url(connection_string)
        options = dict()
        sqlite = url.get_backend_name() == "sqlite"
        if sqlite:
            options["connect_args"] = {"check_same_thread": False}
            if url.database in (None, "", ":memory:"):
                options["poolclass"] = StaticPool
        self.engine = create_engine(connection_string, echo=echo, **options)
        if sqlite:
            event.listen(self.engine, "connect", _sqlite_foreign_keys)
        self.session = scoped_session(sessionmaker(
            autoflush=False, bind=self.engine))

        self.fields = dict()
        for fields in field_maps:
            fields.validate(Base.metadata.tables[fields.table])
            self.fields[fields.table] = fields
        logger.debug("Storage ready on %s", url.render_as_string(
            hide_password=True))

    def create_all(self):
        Base.metadata.create_all(bind=self.engine)

    def close(self):
        self.session.remove()
        self.engine.dispose()

    @contextmanager
    def transaction(self):
        session = self.session()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise

    def table(self, name):
        """
        Returns a QueryScope restricted to one table. Entity classes are
        accepted as well, their table name being the snake_case form of the
        class name.
        """
        if not isinstance(name, str):
            name = snake_case(name.__name__)
        if name not in self.fields:
            raise KeyError("Unknown table {}".format(name))
        return QueryScope(self, Base.metadata.tables[name], self.fields[name])

class QueryScope:
    """
    Immutable query builder over a single table. Conditions and inserted
    values are given by field name and translated to column names; rows come
    back as dicts keyed by field name.
    """

    def __init__(self, storage, table, fields):
        self.storage = storage
        self.table = table
        self.fields = fields
        self._criteria = ()
        self._columns = ()
        self._limit = None
        self._offset = None

    def __repr__(self):
        return "<QueryScope {}>".format(self.table.name)

    def _copy(self, **changes):
        scope = copy.copy(self)
        scope.__dict__.update(changes)
        return scope

    def where(self, **conditions):
        criteria = [self.table.c[self.fields.column(k)] == v
                for k, v in conditions.items()]
        return self._copy(_criteria=self._criteria + tuple(criteria))

    def column(self, name):
        """The table column behind a field, for building filter() clauses."""
        return self.table.c[self.fields.column(name)]

    def filter(self, *clauses):
        return self._copy(_criteria=self._criteria + clauses)

    def columns(self, *names):
        return self._copy(
                _columns=tuple(self.fields.column(n) for n in names))

    def limit(self, limit):
        return self._copy(_limit=limit)

    def offset(self, offset):
        return self._copy(_offset=offset)

    def paginate(self, per_page=10, current_page=1):
        current_page = max(current_page, 1)
        return self.offset((current_page - 1) * per_page).limit(per_page)

    @property
    def window(self):
        return self._offset, self._limit

    def _select(self, *columns):
        if not columns:
            if self._columns:
                columns = [self.table.c[c] for c in self._columns]
            else:
                columns = [self.table]
        stmt = select(*columns).where(*self._criteria)
        stmt = stmt.order_by(*self.table.primary_key.columns)
        if self._offset:
            stmt = stmt.offset(self._offset)
        if self._limit is not None:
            stmt = stmt.limit(self._limit)
        return stmt

    def all(self):
        with self.storage.transaction() as session:
            rows = session.execute(self._select()).mappings().all()
        return [self.fields.load(row) for row in rows]

    def first(self):
        rows = self.limit(1).all()
        return rows[0] if rows else None

    def count(self):
        stmt = (select(func.count())
                .select_from(self.table)
                .where(*self._criteria))
        with self.storage.transaction() as session:
            return session.execute(stmt).scalar_one()

    def insert(self, **values):
        stmt = insert(self.table).values(**self.fields.dump(values))
        with self.storage.transaction() as session:
            result = session.execute(stmt)
            return result.inserted_primary_key[0]

    def delete(self):
        """Deletes the matching rows, at most limit() of them."""
        with self.storage.transaction() as session:
            if self._limit is None:
                stmt = delete(self.table).where(*self._criteria)
            else:
                pk = list(self.table.primary_key.columns)
                ids = session.execute(self._select(*pk)).scalars().all()
                if not ids:
                    return 0
                stmt = delete(self.table).where(pk[0].in_(ids))
            return session.execute(stmt).rowcount
