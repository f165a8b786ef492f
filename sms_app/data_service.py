"""
Data service: the only path from application code to persisted rows.

Reads come back as plain dictionaries (nested dictionaries for joined
relations) so report code never touches ORM objects. Writes publish a
ChangeEvent to subscribers once they have committed.
"""
import itertools
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from sqlalchemy import and_, or_, select as sa_select
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import selectinload

from .errors import ConflictError, DataFetchError, DataServiceError

logger = logging.getLogger(__name__)

FILTER_OPS = ("eq", "gte", "lte", "in", "ilike", "or")
CHANGE_EVENTS = ("INSERT", "UPDATE", "DELETE", "*")

# Never returned by a "*" selection
HIDDEN_COLUMNS = {
    "users": {"password_hash"},
}


@dataclass(frozen=True)
class Filter:
    column: Optional[str]
    op: str = "eq"
    value: Any = None


def eq(column, value):
    return Filter(column, "eq", value)


def gte(column, value):
    return Filter(column, "gte", value)


def lte(column, value):
    return Filter(column, "lte", value)


def in_(column, values):
    return Filter(column, "in", tuple(values))


def ilike(column, pattern):
    return Filter(column, "ilike", pattern)


def any_of(*filters):
    return Filter(None, "or", tuple(filters))


def between(column, start, end):
    """Inclusive range, both ends."""
    return [gte(column, start), lte(column, end)]


@dataclass(frozen=True)
class Order:
    column: str
    descending: bool = False


@dataclass
class Join:
    columns: Sequence[str] = ("*",)
    joins: Dict[str, "Join"] = field(default_factory=dict)


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    event: str
    rows: tuple = ()


class Subscription:
    def __init__(self, sub_id: int, table: str, event: str, handler: Callable[[ChangeEvent], None]):
        self.id = sub_id
        self.table = table
        self.event = event
        self.handler = handler
        self.active = True

    def matches(self, change: ChangeEvent) -> bool:
        return self.active and self.table == change.table and self.event in ("*", change.event)

    def __repr__(self):
        return f"<Subscription {self.id} {self.table}:{self.event}>"


class ChangeBus:
    """Row-level change notifications. One handler runs at a time; nothing is queued.

    Handlers may write through the Data Service; the nested publish runs on the
    same thread under the same reentrant lock.
    """

    def __init__(self):
        self._subs: Dict[int, Subscription] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()
        self._dispatch_lock = threading.RLock()

    def subscribe(self, table: str, event: str, handler) -> Subscription:
        event = (event or "*").upper()
        if event not in CHANGE_EVENTS:
            raise ValueError(f"Unsupported change event: {event}")
        with self._lock:
            sub = Subscription(next(self._ids), table, event, handler)
            self._subs[sub.id] = sub
        return sub

    def unsubscribe(self, sub: Subscription) -> bool:
        if sub is None:
            return False
        with self._lock:
            removed = self._subs.pop(sub.id, None)
        sub.active = False
        return removed is not None

    def subscriptions(self, table: str = None) -> List[Subscription]:
        with self._lock:
            subs = list(self._subs.values())
        return [s for s in subs if table is None or s.table == table]

    def publish(self, change: ChangeEvent) -> int:
        delivered = 0
        with self._dispatch_lock:
            for sub in self.subscriptions(change.table):
                if not sub.matches(change):
                    continue
                try:
                    sub.handler(change)
                    delivered += 1
                except Exception:
                    # The write has already committed; a broken listener must not undo it
                    logger.exception("Change handler %r failed for %s %s", sub, change.event, change.table)
        return delivered


class DataService:
    """Contract consumed by reports, permissions and the user directory."""

    def __init__(self, changes: ChangeBus = None):
        self.changes = changes or ChangeBus()

    def select(self, table, columns=("*",), joins=None, filters=None, order_by=None) -> List[dict]:
        raise NotImplementedError

    def call(self, procedure: str, params: dict = None) -> List[dict]:
        raise NotImplementedError

    def insert(self, table, rows) -> List[dict]:
        raise NotImplementedError

    def update(self, table, filters, patch) -> List[dict]:
        raise NotImplementedError

    def delete(self, table, filters) -> bool:
        raise NotImplementedError

    def subscribe(self, table, event, handler) -> Subscription:
        return self.changes.subscribe(table, event, handler)

    def unsubscribe(self, handle: Subscription) -> bool:
        return self.changes.unsubscribe(handle)


class SqlDataService(DataService):
    def __init__(self, session, tables=None, procedures=None, changes: ChangeBus = None):
        super().__init__(changes)
        if tables is None:
            from .models import TABLES as tables
        if procedures is None:
            from .procedures import PROCEDURES as procedures
        self.session = session
        self.tables = tables
        self.procedures = procedures

    # ---- resolution helpers ----

    def _model(self, table):
        model = self.tables.get(table)
        if model is None:
            raise DataFetchError(f"Unknown table '{table}'", table=table)
        return model

    def _column_keys(self, model):
        return [c.key for c in sa_inspect(model).column_attrs]

    def _column(self, model, name):
        if name not in self._column_keys(model):
            raise DataFetchError(f"Unknown column '{name}' on {model.__tablename__}", table=model.__tablename__)
        return getattr(model, name)

    def _condition(self, model, flt: Filter):
        if flt.op not in FILTER_OPS:
            raise DataFetchError(f"Unsupported filter operator '{flt.op}'", table=model.__tablename__)
        if flt.op == "or":
            return or_(*[self._condition(model, f) for f in flt.value])
        col = self._column(model, flt.column)
        if flt.op == "eq":
            return col.is_(None) if flt.value is None else col == flt.value
        if flt.op == "gte":
            return col >= flt.value
        if flt.op == "lte":
            return col <= flt.value
        if flt.op == "in":
            return col.in_(list(flt.value or ()))
        return col.ilike(flt.value)

    def _where(self, model, filters):
        conds = [self._condition(model, f) for f in (filters or [])]
        return and_(*conds) if conds else None

    def _load_options(self, model, joins, parent=None):
        options = []
        mapper = sa_inspect(model)
        for name, join in (joins or {}).items():
            rel = mapper.relationships.get(name)
            if rel is None:
                raise DataFetchError(f"Unknown relation '{name}' on {model.__tablename__}", table=model.__tablename__)
            attr = getattr(model, name)
            opt = parent.selectinload(attr) if parent is not None else selectinload(attr)
            options.append(opt)
            options.extend(self._load_options(rel.mapper.class_, join.joins, opt))
        return options

    def _serialize(self, obj, columns=("*",), joins=None) -> dict:
        model = type(obj)
        keys = self._column_keys(model)
        if not columns or "*" in columns:
            hidden = HIDDEN_COLUMNS.get(model.__tablename__, set())
            wanted = [k for k in keys if k not in hidden]
        else:
            wanted = []
            for c in columns:
                if c not in keys:
                    raise DataFetchError(f"Unknown column '{c}' on {model.__tablename__}", table=model.__tablename__)
                wanted.append(c)
        row = {k: getattr(obj, k) for k in wanted}
        mapper = sa_inspect(model)
        for name, join in (joins or {}).items():
            rel = mapper.relationships[name]
            value = getattr(obj, name)
            if rel.uselist:
                row[name] = [self._serialize(v, join.columns, join.joins) for v in (value or [])]
            else:
                row[name] = self._serialize(value, join.columns, join.joins) if value is not None else None
        return row

    def _fetch_objects(self, model, filters=None, order_by=None, options=()):
        stmt = sa_select(model)
        where = self._where(model, filters)
        if where is not None:
            stmt = stmt.where(where)
        for o in (order_by or []):
            col = self._column(model, o.column)
            stmt = stmt.order_by(col.desc() if o.descending else col.asc())
        if options:
            stmt = stmt.options(*options)
        return self.session.execute(stmt).scalars().all()

    def _commit(self, table):
        try:
            self.session.commit()
        except IntegrityError as e:
            self.session.rollback()
            raise ConflictError(f"Conflicting write on {table}", table=table) from e
        except SQLAlchemyError as e:
            self.session.rollback()
            raise DataFetchError(f"Write to {table} failed", table=table) from e

    def _publish(self, table, event, rows):
        self.changes.publish(ChangeEvent(table, event, tuple(rows)))

    # ---- contract ----

    def select(self, table, columns=("*",), joins=None, filters=None, order_by=None) -> List[dict]:
        model = self._model(table)
        options = self._load_options(model, joins)
        try:
            objs = self._fetch_objects(model, filters, order_by, options)
            return [self._serialize(o, columns, joins) for o in objs]
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.warning("Select on %s failed: %s", table, e)
            raise DataFetchError(f"Failed to fetch {table}", table=table) from e

    def call(self, procedure: str, params: dict = None) -> List[dict]:
        fn = self.procedures.get(procedure)
        if fn is None:
            raise DataFetchError(f"Unknown procedure '{procedure}'")
        try:
            return list(fn(self.session, **(params or {})))
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.warning("Procedure %s failed: %s", procedure, e)
            raise DataFetchError(f"Procedure {procedure} failed") from e

    def insert(self, table, rows) -> List[dict]:
        model = self._model(table)
        keys = set(self._column_keys(model))
        objs = []
        for row in rows:
            unknown = set(row) - keys
            if unknown:
                raise DataServiceError(f"Unknown columns for {table}: {', '.join(sorted(unknown))}", table=table)
            objs.append(model(**row))
        self.session.add_all(objs)
        self._commit(table)
        inserted = [self._serialize(o) for o in objs]
        self._publish(table, "INSERT", inserted)
        return inserted

    def update(self, table, filters, patch) -> List[dict]:
        model = self._model(table)
        keys = set(self._column_keys(model))
        unknown = set(patch) - keys
        if unknown:
            raise DataServiceError(f"Unknown columns for {table}: {', '.join(sorted(unknown))}", table=table)
        try:
            objs = self._fetch_objects(model, filters)
        except SQLAlchemyError as e:
            self.session.rollback()
            raise DataFetchError(f"Failed to fetch {table}", table=table) from e
        for obj in objs:
            for k, v in patch.items():
                setattr(obj, k, v)
        self._commit(table)
        updated = [self._serialize(o) for o in objs]
        if updated:
            self._publish(table, "UPDATE", updated)
        return updated

    def delete(self, table, filters) -> bool:
        model = self._model(table)
        try:
            objs = self._fetch_objects(model, filters)
        except SQLAlchemyError as e:
            self.session.rollback()
            raise DataFetchError(f"Failed to fetch {table}", table=table) from e
        removed = [self._serialize(o) for o in objs]
        for obj in objs:
            self.session.delete(obj)
        self._commit(table)
        if removed:
            self._publish(table, "DELETE", removed)
        return True


class TableWatcher:
    """Keeps at most one live subscription per watcher; restarting drops the old one."""

    def __init__(self, service: DataService, table: str, event: str = "INSERT", handler=None):
        self.service = service
        self.table = table
        self.event = event
        self.handler = handler
        self._sub = None

    @property
    def active(self):
        return self._sub is not None and self._sub.active

    def start(self, handler=None):
        if handler is not None:
            self.handler = handler
        self.stop()
        self._sub = self.service.subscribe(self.table, self.event, self.handler)
        return self

    def stop(self):
        if self._sub is not None:
            self.service.unsubscribe(self._sub)
            self._sub = None

    def __enter__(self):
        return self.start()

    def __exit__(self, exc_type, exc, tb):
        self.stop()
        return False


def get_data_service():
    """Per-app-context service bound to the Flask-SQLAlchemy session."""
    from flask import current_app, g
    from . import db
    svc = g.get("data_service")
    if svc is None:
        svc = SqlDataService(db.session, changes=current_app.extensions["sms_changes"])
        g.data_service = svc
    return svc
