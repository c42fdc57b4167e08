"""
Domain Context

Defines what a unit of work needs from a persistence context and provides an
in-memory implementation with session semantics, for tests and prototyping.
"""

import copy
import logging
from typing import Any, Dict, Hashable, List, Optional, Protocol, Sequence, Tuple, Type, TypeVar

from .entity import EventSource
from .errors import CommitFailed

logger = logging.getLogger(__name__)

E = TypeVar('E')

_Key = Tuple[type, Hashable]


class DomainContext(Protocol):
    """
    Persistence context consumed by the unit of work.

    ``collect_event_sources`` returns the entities inserted, changed or
    deleted since the last commit or rollback that hold at least one event.
    """

    async def commit(self) -> None:
        ...

    async def rollback(self) -> None:
        ...

    async def collect_event_sources(self) -> Sequence[EventSource]:
        ...


class InMemoryDomainContext:
    """
    In-memory persistence context.

    Works like a database session: entities loaded through ``get``, ``all``
    or ``find`` are tracked in an identity map, changes are pending until
    ``commit`` and are discarded by ``rollback``. Committed state is stored
    as detached copies, so a rollback also discards in-place mutations of
    loaded entities.

    Entities must have an ``id`` attribute.

    Usage:
        context = InMemoryDomainContext()

        employee = Employee("E-1", "Jo")
        context.insert(employee)
        await context.commit()

        loaded = context.get(Employee, "E-1")
        loaded.rename("Joanna")
        context.update(loaded)
        await context.commit()
    """

    def __init__(self):
        self._storage: Dict[type, Dict[Hashable, Any]] = {}
        self._identity_map: Dict[_Key, Any] = {}
        self._inserted: List[Any] = []
        self._updated: List[Any] = []
        self._deleted: List[Any] = []

    def insert(self, entity: Any) -> None:
        """
        Add a new entity.

        Raises:
            ValueError: If the entity has no id or the id is already taken
        """
        key = self._key(entity)
        if self._exists(key):
            raise ValueError(f"Entity with ID {key[1]} already exists")

        self._identity_map[key] = entity
        self._inserted.append(entity)
        logger.debug(f"Inserted {type(entity).__name__} with ID {key[1]}")

    def update(self, entity: Any) -> None:
        """
        Mark a loaded entity as changed.

        Updating an entity inserted in the same session is a no-op.

        Raises:
            ValueError: If the entity is not known to the context
        """
        key = self._key(entity)
        if _contains(self._inserted, entity) or _contains(self._updated, entity):
            return
        if not self._exists(key):
            raise ValueError(f"Entity with ID {key[1]} not found")

        self._identity_map[key] = entity
        self._updated.append(entity)
        logger.debug(f"Marked {type(entity).__name__} with ID {key[1]} as changed")

    def delete(self, entity: Any) -> None:
        """
        Delete an entity.

        Raises:
            ValueError: If the entity is not known to the context
        """
        key = self._key(entity)
        if _contains(self._deleted, entity):
            return
        if not self._exists(key):
            raise ValueError(f"Entity with ID {key[1]} not found")

        self._deleted.append(entity)
        logger.debug(f"Deleted {type(entity).__name__} with ID {key[1]}")

    def get(self, entity_type: Type[E], entity_id: Hashable) -> Optional[E]:
        """Get an entity by type and ID, or None when absent."""
        key = (entity_type, entity_id)
        if not self._exists(key):
            return None

        entity = self._identity_map.get(key)
        if entity is None:
            entity = _detach(self._storage[entity_type][entity_id])
            self._identity_map[key] = entity
        return entity

    def all(self, entity_type: Type[E]) -> List[E]:
        """Get all entities of a type, committed ones first."""
        ids = list(self._storage.get(entity_type, {}))
        for entity in self._inserted:
            if type(entity) is entity_type and entity.id not in ids:
                ids.append(entity.id)

        entities = []
        for entity_id in ids:
            entity = self.get(entity_type, entity_id)
            if entity is not None:
                entities.append(entity)
        return entities

    def find(self, entity_type: Type[E], **criteria: Any) -> List[E]:
        """
        Find entities of a type matching criteria.

        Simple implementation that matches entity attributes.
        """
        results = [
            entity for entity in self.all(entity_type)
            if all(hasattr(entity, k) and getattr(entity, k) == v for k, v in criteria.items())
        ]
        logger.debug(f"Find {entity_type.__name__} with criteria {criteria}: Found {len(results)} entities")
        return results

    def count(self, entity_type: type) -> int:
        return len(self.all(entity_type))

    @property
    def has_changes(self) -> bool:
        return bool(self._inserted or self._updated or self._deleted)

    async def collect_event_sources(self) -> List[EventSource]:
        """
        Entities changed, inserted or deleted in this session that hold events.

        Entities that were only read are not included, even if they raised
        events.
        """
        sources: List[EventSource] = []
        for entity in self._updated + self._inserted + self._deleted:
            if not isinstance(entity, EventSource) or not entity.events:
                continue
            if not _contains(sources, entity):
                sources.append(entity)
        return sources

    async def commit(self) -> None:
        """
        Persist pending changes.

        Raises:
            CommitFailed: If the changes could not be stored
        """
        if not self.has_changes:
            logger.debug("Nothing to commit")
        try:
            self._apply_changes()
        except Exception as e:
            logger.error(f"Error committing context: {e}", exc_info=True)
            raise CommitFailed(f"Could not commit pending changes: {e}") from e

        logger.info(
            f"Committed {len(self._inserted)} inserted, {len(self._updated)} changed, "
            f"{len(self._deleted)} deleted entities"
        )
        self._reset()

    async def rollback(self) -> None:
        """Discard pending changes."""
        logger.info(
            f"Rolling back {len(self._inserted)} inserted, {len(self._updated)} changed, "
            f"{len(self._deleted)} deleted entities"
        )
        self._reset()

    def _apply_changes(self) -> None:
        # Build the new state first so a failure leaves storage untouched.
        storage = {entity_type: dict(entities) for entity_type, entities in self._storage.items()}
        for entity in self._deleted:
            storage.get(type(entity), {}).pop(entity.id, None)
        for entity in self._inserted + self._updated:
            if not _contains(self._deleted, entity):
                storage.setdefault(type(entity), {})[entity.id] = _detach(entity)
        self._storage = storage

    def _exists(self, key: _Key) -> bool:
        entity_type, entity_id = key
        # A pending insert wins over a pending delete of an earlier entity
        # with the same key, unless that very entity was deleted again.
        if any(self._key(e) == key and not _contains(self._deleted, e) for e in self._inserted):
            return True
        if any(self._key(e) == key for e in self._deleted):
            return False
        return entity_id in self._storage.get(entity_type, {})

    def _reset(self) -> None:
        self._identity_map.clear()
        self._inserted.clear()
        self._updated.clear()
        self._deleted.clear()

    @staticmethod
    def _key(entity: Any) -> _Key:
        if not hasattr(entity, 'id'):
            raise ValueError("Entity must have an 'id' attribute")
        return type(entity), entity.id


def _contains(entities: List[Any], entity: Any) -> bool:
    return any(e is entity for e in entities)


def _detach(entity: Any) -> Any:
    """Copy an entity without its pending events."""
    detached = copy.deepcopy(entity)
    if isinstance(detached, EventSource):
        detached.clear_events()
    return detached
