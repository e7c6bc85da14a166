"""
Billable entity identity.

Any host object can be metered as long as it has a stable (type, id)
identity. The tracker only ever reads that identity.
"""

from dataclasses import dataclass
from typing import Any, Tuple, Union


@dataclass(frozen=True)
class EntityRef:
    """Polymorphic identity of a billable entity."""
    type: str
    id: str

    def __post_init__(self):
        """Validate identity parts and normalize the id to text."""
        if not self.type or not str(self.type).strip():
            raise ValueError("entity type is required and cannot be empty")
        if self.id is None or str(self.id) == "":
            raise ValueError("entity id is required and cannot be empty")
        # Ids are stored as text so integer and UUID keys share one column
        object.__setattr__(self, "id", str(self.id))

    @property
    def key(self) -> str:
        """Cache key for this identity."""
        return f"{self.type}:{self.id}"


EntityLike = Union[EntityRef, Tuple[str, Any], Any]


def entity_ref(entity: EntityLike) -> EntityRef:
    """Coerce an entity reference, a (type, id) tuple or a billable object.

    Raises:
        TypeError: If the object exposes no billable identity
    """
    if isinstance(entity, EntityRef):
        return entity
    if isinstance(entity, tuple) and len(entity) == 2:
        return EntityRef(type=entity[0], id=entity[1])
    if hasattr(entity, "billable_type") and hasattr(entity, "billable_id"):
        return EntityRef(type=entity.billable_type, id=entity.billable_id)
    raise TypeError(
        f"{type(entity).__name__} is not billable: expected an EntityRef, "
        "a (type, id) tuple or an object with billable_type/billable_id"
    )


class Billable:
    """Mixin that makes a domain object billable.

    The billable type defaults to the class name and the id to ``self.id``.
    Override ``billable_type`` or ``billable_id`` when the host object uses
    different names.
    """

    @property
    def billable_type(self) -> str:
        return type(self).__name__

    @property
    def billable_id(self) -> str:
        return str(getattr(self, "id"))

    def tracking_policy(self, repository):
        """Stored tracking policy for this object, or None."""
        return repository.get_tracking_policy(entity_ref(self))

    def usage_events(self, repository, limit: int = 1000):
        """Recorded usage events for this object, newest first."""
        return repository.fetch_usage_events(entity=entity_ref(self), limit=limit)

    def usage_rollups(self, repository):
        """Monthly rollups for this object."""
        return repository.fetch_usage_rollups(entity=entity_ref(self))
