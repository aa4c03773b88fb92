"""Shared document store adapter.

Exposes the four primitives the game core relies on over three logical
resources (game state, teams, submissions):

- ``get`` / ``list`` read the current value
- ``set`` writes with optional merge
- ``transact`` runs a read-then-conditional-write function atomically
- ``subscribe`` pushes the new value to observers after every committed write

Documents live in SQL tables through Flask-SQLAlchemy. Observers are kept per
Flask application in ``app.extensions`` and are called synchronously once the
writing transaction has committed.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from enum import Enum
from threading import RLock
from typing import Any, Callable
from uuid import uuid4

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from trivia.entities import MASTER_KEY
from trivia.errors import StoreUnavailable, TransactionConflict
from trivia.models import GameStateDocument, SubmissionDocument, TeamDocument

logger = logging.getLogger(__name__)

GAME_STATE = 'game_state'
TEAMS = 'teams'
SUBMISSIONS = 'submissions'

_DOCUMENTS = {
    GAME_STATE: GameStateDocument,
    TEAMS: TeamDocument,
    SUBMISSIONS: SubmissionDocument,
}
_ORDERING = {
    GAME_STATE: ('key',),
    TEAMS: ('joined_at', 'id'),
    SUBMISSIONS: ('accepted_at', 'id'),
}
_EXTENSION_KEY = 'trivia_store'


def _document(resource):
    try:
        return _DOCUMENTS[resource]
    except KeyError:
        raise ValueError(f'Unknown resource {resource!r}') from None


def _primary_key(model):
    return model.__table__.primary_key.columns.values()[0].name


def _column_values(model, value, merge, existing):
    """Column values to write. Without merge, absent fields fall back to column defaults."""
    columns = {c.name: c for c in model.__table__.columns}
    unknown = set(value) - set(columns)
    if unknown:
        raise ValueError(f'Unknown fields for {model.__tablename__}: {sorted(unknown)}')
    values = {}
    if not merge or existing is None:
        for name, column in columns.items():
            if column.primary_key:
                continue
            values[name] = column.default.arg if column.default is not None else None
    for name, item in value.items():
        values[name] = item.value if isinstance(item, Enum) else item
    return values


class StoreTransaction:
    """Handle passed to ``SharedStore.transact`` callbacks."""

    def __init__(self, session):
        self._session = session
        self.touched: set[str] = set()

    def get(self, resource: str, key: str, for_update: bool = False):
        model = _document(resource)
        stmt = model.query.filter_by(**{_primary_key(model): key})
        if for_update:
            stmt = stmt.with_for_update()
        document = stmt.first()
        return document.to_entity() if document else None

    def find(self, resource: str, **filters) -> list:
        model = _document(resource)
        ordering = [getattr(model, name) for name in _ORDERING[resource]]
        return [d.to_entity() for d in model.query.filter_by(**filters).order_by(*ordering).all()]

    def set(self, resource: str, key: str, value: dict, merge: bool = False) -> None:
        model = _document(resource)
        document = self._session.get(model, key)
        values = _column_values(model, value, merge, document)
        if document is None:
            document = model(**{_primary_key(model): key})
            self._session.add(document)
        for name, item in values.items():
            setattr(document, name, item)
        self.touched.add(resource)

    def insert(self, resource: str, value: dict) -> str:
        key = uuid4().hex
        self.set(resource, key, value)
        # Flush now so a uniqueness clash surfaces inside the transaction
        self._session.flush()
        return key

    def clear(self, resource: str) -> int:
        count = _document(resource).query.delete()
        self.touched.add(resource)
        return count


class _Subscription:
    def __init__(self, resource, callback, key, filters):
        self.resource = resource
        self.callback = callback
        self.key = key
        self.filters = filters

    @property
    def target(self):
        return (self.resource, self.key, tuple(sorted(self.filters.items())))


class _SubscriptionRegistry:
    def __init__(self):
        self._lock = RLock()
        # Held while a snapshot is read and handed to observers, so deliveries
        # for one app never overtake each other
        self.delivery_lock = RLock()
        self._subscriptions: list[_Subscription] = []

    def add(self, subscription):
        with self._lock:
            self._subscriptions.append(subscription)

    def remove(self, subscription):
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    def matching(self, resources):
        with self._lock:
            return [s for s in self._subscriptions if s.resource in resources]

    def __len__(self):
        with self._lock:
            return len(self._subscriptions)


class SharedStore:
    """get/set/transact/subscribe over the game state, team and submission documents."""

    def __init__(self, db=None):
        self._db = db

    def init_app(self, app):
        app.extensions[_EXTENSION_KEY] = _SubscriptionRegistry()

    @property
    def _subscriptions(self) -> _SubscriptionRegistry:
        return current_app.extensions[_EXTENSION_KEY]

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    @contextmanager
    def _store_errors(self, action):
        try:
            yield
        except SQLAlchemyError as exc:
            self._db.session.rollback()
            logger.error(f'[store-error] action={action} error={exc}')
            raise StoreUnavailable(f'Store {action} failed') from exc

    def get(self, resource: str, key: str):
        with self._store_errors('get'):
            return StoreTransaction(self._db.session).get(resource, key)

    def list(self, resource: str, **filters) -> list:
        with self._store_errors('list'):
            return StoreTransaction(self._db.session).find(resource, **filters)

    def set(self, resource: str, key: str, value: dict, merge: bool = False) -> None:
        self.transact(lambda txn: txn.set(resource, key, value, merge))

    def clear(self, *resources: str) -> None:
        def _clear(txn):
            for resource in resources:
                txn.clear(resource)
        self.transact(_clear)

    def transact(self, fn: Callable[[StoreTransaction], Any]) -> Any:
        """Run ``fn`` inside one database transaction and notify observers on commit.

        A uniqueness violation raises ``TransactionConflict``; any other database
        failure raises ``StoreUnavailable``. Exceptions raised by ``fn`` roll the
        transaction back and propagate unchanged.
        """
        session = self._db.session
        txn = StoreTransaction(session)
        try:
            result = fn(txn)
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            raise TransactionConflict(str(exc.orig)) from exc
        except SQLAlchemyError as exc:
            session.rollback()
            logger.error(f'[store-error] action=transact error={exc}')
            raise StoreUnavailable('Store transaction failed') from exc
        except Exception:
            session.rollback()
            raise
        self._publish(txn.touched)
        return result

    def subscribe(self, resource: str, on_change: Callable[[Any], None], key: str | None = None,
                  deliver_initial: bool = True, **filters) -> Callable[[], None]:
        """Call ``on_change`` with the new value of the resource after each committed write.

        ``key`` watches a single document; otherwise the list matching ``filters``
        is delivered. Returns the unsubscribe function. If the initial delivery
        fails the subscription is withdrawn before the error propagates.
        """
        _document(resource)
        if resource == GAME_STATE and key is None:
            key = MASTER_KEY
        subscription = _Subscription(resource, on_change, key, filters)
        registry = self._subscriptions
        with registry.delivery_lock:
            registry.add(subscription)
            if deliver_initial:
                try:
                    on_change(self._read(subscription))
                except Exception:
                    registry.remove(subscription)
                    raise
        return lambda: registry.remove(subscription)

    def _read(self, subscription):
        if subscription.key is not None:
            return self.get(subscription.resource, subscription.key)
        return self.list(subscription.resource, **subscription.filters)

    def _publish(self, resources):
        """Deliver fresh snapshots of ``resources`` to their observers.

        Snapshots are read under the delivery lock, so whichever writer delivers
        last also read last and observers always end on the newest committed value.
        """
        if not resources:
            return
        registry = self._subscriptions
        with registry.delivery_lock:
            snapshots = {}
            for subscription in registry.matching(resources):
                target = subscription.target
                try:
                    if target not in snapshots:
                        snapshots[target] = self._read(subscription)
                    subscription.callback(snapshots[target])
                except Exception:
                    logger.exception(f'[notify-failed] resource={subscription.resource}')
