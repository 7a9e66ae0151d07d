from typing import Any, Dict, List, Optional

from loguru import logger
from sqlmodel import Session, select

from hotelcore.catalog.models import ResourceCategory, ResourceInstance, ResourceStatus
from hotelcore.database import utcnow
from hotelcore.errors import InvalidRequest, NotFound

_EDITABLE = ("label", "group", "price_minor", "capacity", "status", "is_active")


def list_resources(session: Session, category: Optional[ResourceCategory] = None,
                   include_inactive: bool = False) -> List[ResourceInstance]:
    stmt = select(ResourceInstance)
    if category is not None:
        stmt = stmt.where(ResourceInstance.category == category)
    if not include_inactive:
        stmt = stmt.where(ResourceInstance.is_active == True)  # noqa: E712
    stmt = stmt.order_by(ResourceInstance.category, ResourceInstance.id)
    return list(session.exec(stmt))


def get_resource(session: Session, resource_id: int) -> ResourceInstance:
    resource = session.get(ResourceInstance, resource_id)
    if resource is None:
        raise NotFound(f"resource {resource_id} not found")
    return resource


def create_resource(session: Session, category: ResourceCategory, label: str, price_minor: int,
                    capacity: int, group: Optional[str] = None,
                    status: ResourceStatus = ResourceStatus.AVAILABLE) -> ResourceInstance:
    if price_minor < 0 or capacity < 1:
        raise InvalidRequest("price must be >= 0 and capacity >= 1")
    resource = ResourceInstance(category=category, label=label, group=group,
                                price_minor=price_minor, capacity=capacity, status=status)
    session.add(resource)
    session.commit()
    session.refresh(resource)
    logger.bind(event="resource_create").info(f"Created {category.value} resource {resource.id} ({label})")
    return resource


def update_resource(session: Session, resource_id: int, changes: Dict[str, Any]) -> ResourceInstance:
    """Apply an admin edit. The stored row is the only source of truth for status."""
    resource = get_resource(session, resource_id)
    unknown = set(changes) - set(_EDITABLE)
    if unknown:
        raise InvalidRequest(f"cannot edit fields: {', '.join(sorted(unknown))}")
    if "price_minor" in changes and changes["price_minor"] < 0:
        raise InvalidRequest("price must be >= 0")
    if "capacity" in changes and changes["capacity"] < 1:
        raise InvalidRequest("capacity must be >= 1")
    for key, value in changes.items():
        setattr(resource, key, value)
    resource.updated_at = utcnow()
    session.add(resource)
    session.commit()
    session.refresh(resource)
    logger.bind(event="resource_update").info(f"Updated resource {resource_id}: {sorted(changes)}")
    return resource
