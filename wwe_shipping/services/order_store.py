"""
Order Store

Storage collaborator for the shipping engine: named attributes on an order
aggregate, an append-only note trail, and save. The engine never depends on
a storage engine directly.

Implementations:
- InMemoryOrderStore: process-local, used in development and tests
- SqlOrderStore: SQLAlchemy async session over the order store tables
"""
import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Protocol

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from wwe_shipping.models.db import ShippingOrder, OrderAttribute, OrderNote
from wwe_shipping.models.order import Order

logger = logging.getLogger(__name__)


class OrderStore(Protocol):
    """Protocol for order attribute storage."""

    async def register_order(self, order: Order) -> None:
        """Make the order snapshot available to get_order."""
        ...

    async def get_order(self, order_id: int) -> Optional[Order]:
        ...

    async def get_attributes(self, order_id: int) -> Dict[str, Any]:
        ...

    async def get_attribute(self, order_id: int, key: str, default: Any = None) -> Any:
        ...

    async def set_attributes(self, order_id: int, values: Dict[str, Any]) -> None:
        """Set several attributes. A None value deletes the key."""
        ...

    async def delete_attributes(self, order_id: int, keys: Iterable[str]) -> None:
        ...

    async def add_note(self, order_id: int, note: str) -> None:
        ...

    async def save(self, order_id: int) -> None:
        ...

    async def find_orders_with_attribute(self, key: str) -> List[int]:
        ...


class InMemoryOrderStore:
    """Dictionary-backed store for development/testing."""

    def __init__(self):
        self._orders: Dict[int, Order] = {}
        self._attributes: Dict[int, Dict[str, Any]] = defaultdict(dict)
        self._notes: Dict[int, List[str]] = defaultdict(list)
        self.save_count = 0

    def add_order(self, order: Order) -> None:
        self._orders[order.id] = order

    def notes_for(self, order_id: int) -> List[str]:
        return list(self._notes.get(order_id, []))

    async def register_order(self, order: Order) -> None:
        self.add_order(order)

    async def get_order(self, order_id: int) -> Optional[Order]:
        return self._orders.get(order_id)

    async def get_attributes(self, order_id: int) -> Dict[str, Any]:
        return dict(self._attributes.get(order_id, {}))

    async def get_attribute(self, order_id: int, key: str, default: Any = None) -> Any:
        return self._attributes.get(order_id, {}).get(key, default)

    async def set_attributes(self, order_id: int, values: Dict[str, Any]) -> None:
        attributes = self._attributes[order_id]
        for key, value in values.items():
            if value is None:
                attributes.pop(key, None)
            else:
                attributes[key] = value

    async def delete_attributes(self, order_id: int, keys: Iterable[str]) -> None:
        attributes = self._attributes.get(order_id, {})
        for key in keys:
            attributes.pop(key, None)

    async def add_note(self, order_id: int, note: str) -> None:
        self._notes[order_id].append(note)

    async def save(self, order_id: int) -> None:
        self.save_count += 1

    async def find_orders_with_attribute(self, key: str) -> List[int]:
        return sorted(oid for oid, attrs in self._attributes.items() if key in attrs)


class SqlOrderStore:
    """
    Order store backed by an async SQLAlchemy session.

    save() flushes; the session owner commits (see get_db_session).
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def register_order(self, order: Order) -> None:
        """Insert or refresh the order snapshot."""
        existing = await self.db.get(ShippingOrder, order.id)
        if existing:
            existing.data = order.to_dict()
        else:
            self.db.add(ShippingOrder(order_id=order.id, data=order.to_dict()))
        await self.db.flush()

    async def get_order(self, order_id: int) -> Optional[Order]:
        row = await self.db.get(ShippingOrder, order_id)
        if not row:
            return None
        return Order.from_dict(row.data)

    async def get_attributes(self, order_id: int) -> Dict[str, Any]:
        result = await self.db.execute(
            select(OrderAttribute).where(OrderAttribute.order_id == order_id)
        )
        return {row.key: row.value for row in result.scalars().all()}

    async def get_attribute(self, order_id: int, key: str, default: Any = None) -> Any:
        result = await self.db.execute(
            select(OrderAttribute).where(
                OrderAttribute.order_id == order_id,
                OrderAttribute.key == key,
            )
        )
        row = result.scalar_one_or_none()
        return row.value if row else default

    async def set_attributes(self, order_id: int, values: Dict[str, Any]) -> None:
        to_delete = [key for key, value in values.items() if value is None]
        to_set = {key: value for key, value in values.items() if value is not None}

        if to_delete:
            await self.delete_attributes(order_id, to_delete)

        if to_set:
            result = await self.db.execute(
                select(OrderAttribute).where(
                    OrderAttribute.order_id == order_id,
                    OrderAttribute.key.in_(list(to_set)),
                )
            )
            existing = {row.key: row for row in result.scalars().all()}
            for key, value in to_set.items():
                if key in existing:
                    existing[key].value = value
                    existing[key].updated_at = datetime.now(timezone.utc)
                else:
                    self.db.add(OrderAttribute(order_id=order_id, key=key, value=value))

    async def delete_attributes(self, order_id: int, keys: Iterable[str]) -> None:
        keys = list(keys)
        if not keys:
            return
        await self.db.execute(
            delete(OrderAttribute).where(
                OrderAttribute.order_id == order_id,
                OrderAttribute.key.in_(keys),
            )
        )

    async def add_note(self, order_id: int, note: str) -> None:
        self.db.add(OrderNote(order_id=order_id, note=note))

    async def save(self, order_id: int) -> None:
        await self.db.flush()
        logger.debug(f"Order {order_id} attributes flushed")

    async def find_orders_with_attribute(self, key: str) -> List[int]:
        result = await self.db.execute(
            select(OrderAttribute.order_id).where(OrderAttribute.key == key).distinct()
        )
        return sorted(result.scalars().all())
