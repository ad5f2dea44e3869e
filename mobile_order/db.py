"""
Database abstraction for Postgres and an in-memory test implementation.

Every operation is scoped by owner_id; a row owned by another account is
indistinguishable from a missing one.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterable, Optional, Protocol

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Integer,
    String,
    UniqueConstraint,
    create_engine,
    select,
    text,
)
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from mobile_order.types import OrderStatus

logger = logging.getLogger(__name__)

SHOP_FIELDS = (
    "title",
    "image_url",
    "image_path",
    "description",
    "prefecture",
    "city",
    "street_address",
    "building",
    "is_visible",
    "is_order_accepting",
)
CATEGORY_FIELDS = ("title",)
PRODUCT_FIELDS = (
    "category_id",
    "title",
    "image_url",
    "image_path",
    "description",
    "price",
    "is_visible",
    "is_order_accepting",
)


class ShopAlreadyExistsError(Exception):
    """Raised when an owner tries to create a second shop."""


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class DbClient(Protocol):
    """Interface for database access."""

    def ping(self) -> bool:
        ...

    # Shop
    def create_shop(self, owner_id: str, data: dict) -> "ShopRecord":
        ...

    def get_shop(self, owner_id: str) -> Optional["ShopRecord"]:
        ...

    def update_shop(self, owner_id: str, changes: dict) -> Optional["ShopRecord"]:
        ...

    # Categories
    def create_category(self, owner_id: str, title: str) -> "CategoryRecord":
        ...

    def list_categories(self, owner_id: str) -> list["CategoryRecord"]:
        ...

    def get_category(
        self, owner_id: str, category_id: str
    ) -> Optional["CategoryRecord"]:
        ...

    def update_category(
        self, owner_id: str, category_id: str, changes: dict
    ) -> Optional["CategoryRecord"]:
        ...

    def delete_category(self, owner_id: str, category_id: str) -> bool:
        ...

    # Category sequence
    def get_category_sequence(self, owner_id: str) -> list[str]:
        ...

    def append_to_category_sequence(self, owner_id: str, category_id: str) -> None:
        ...

    def set_category_sequence(self, owner_id: str, category_ids: list[str]) -> None:
        ...

    def remove_from_category_sequence(self, owner_id: str, category_id: str) -> bool:
        ...

    # Products
    def create_product(
        self, owner_id: str, category_id: str, data: dict
    ) -> "ProductRecord":
        ...

    def list_products_in_category(
        self, owner_id: str, category_id: str
    ) -> list["ProductRecord"]:
        ...

    def get_product(self, owner_id: str, product_id: str) -> Optional["ProductRecord"]:
        ...

    def get_products_by_ids(
        self, owner_id: str, product_ids: Iterable[str]
    ) -> dict[str, "ProductRecord"]:
        ...

    def update_product(
        self, owner_id: str, product_id: str, changes: dict
    ) -> Optional["ProductRecord"]:
        ...

    def delete_product(self, owner_id: str, product_id: str) -> bool:
        ...

    # Product sequences
    def get_product_sequence(
        self, owner_id: str, category_id: str
    ) -> Optional[list[str]]:
        ...

    def append_to_product_sequence(
        self, owner_id: str, category_id: str, product_id: str
    ) -> None:
        ...

    def set_product_sequence(
        self, owner_id: str, category_id: str, product_ids: list[str]
    ) -> None:
        ...

    def remove_from_product_sequence(
        self, owner_id: str, category_id: str, product_id: str
    ) -> bool:
        ...

    def delete_product_sequence(self, owner_id: str, category_id: str) -> None:
        ...

    # Orders
    def create_order(self, data: dict) -> "OrderRecord":
        ...

    def list_orders(self, owner_id: str) -> list["OrderRecord"]:
        ...

    def list_new_orders(self, owner_id: str) -> list["OrderRecord"]:
        ...

    def list_past_orders(self, owner_id: str) -> list["OrderRecord"]:
        ...

    def list_user_orders(self, user_id: str) -> list["OrderRecord"]:
        ...

    def get_order(self, owner_id: str, order_id: str) -> Optional["OrderRecord"]:
        ...

    def update_order_status(
        self, owner_id: str, order_id: str, status: OrderStatus
    ) -> bool:
        ...


@dataclass
class ShopRecord:
    id: str
    owner_id: str
    title: str
    image_url: str
    image_path: str
    prefecture: str
    city: str
    street_address: str
    description: Optional[str] = None
    building: Optional[str] = None
    is_visible: bool = False
    is_order_accepting: bool = False
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "ownerId": self.owner_id,
            "title": self.title,
            "imageUrl": self.image_url,
            "imagePath": self.image_path,
            "description": self.description,
            "prefecture": self.prefecture,
            "city": self.city,
            "streetAddress": self.street_address,
            "building": self.building,
            "isVisible": self.is_visible,
            "isOrderAccepting": self.is_order_accepting,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


@dataclass
class CategoryRecord:
    id: str
    owner_id: str
    title: str
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "ownerId": self.owner_id,
            "title": self.title,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


@dataclass
class ProductRecord:
    id: str
    owner_id: str
    category_id: str
    title: str
    image_url: str
    image_path: str
    price: int
    description: Optional[str] = None
    is_visible: bool = False
    is_order_accepting: bool = False
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "ownerId": self.owner_id,
            "categoryId": self.category_id,
            "title": self.title,
            "imageUrl": self.image_url,
            "imagePath": self.image_path,
            "description": self.description,
            "price": self.price,
            "isVisible": self.is_visible,
            "isOrderAccepting": self.is_order_accepting,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


@dataclass
class OrderRecord:
    id: str
    owner_id: str
    user_id: str
    pickup_id: str
    items: Dict[str, int]
    product_ids: list[str]
    order_status: OrderStatus
    order_date: datetime
    total: int
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "ownerId": self.owner_id,
            "userId": self.user_id,
            "pickupId": self.pickup_id,
            "items": dict(self.items),
            "productIds": list(self.product_ids),
            "orderStatus": self.order_status.value,
            "orderDate": _iso(self.order_date),
            "total": self.total,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


class InMemoryDbClient:
    """Simple in-memory database for development and tests."""

    def __init__(self):
        self.shops: Dict[str, ShopRecord] = {}
        self.categories: Dict[str, CategoryRecord] = {}
        self.category_sequences: Dict[str, list[str]] = {}
        self.products: Dict[str, ProductRecord] = {}
        self.product_sequences: Dict[tuple[str, str], list[str]] = {}
        self.orders: Dict[str, OrderRecord] = {}

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        self.shops.clear()
        self.categories.clear()
        self.category_sequences.clear()
        self.products.clear()
        self.product_sequences.clear()
        self.orders.clear()

    def ping(self) -> bool:
        return True

    def create_shop(self, owner_id: str, data: dict) -> ShopRecord:
        if owner_id in self.shops:
            raise ShopAlreadyExistsError(owner_id)
        values = {key: data[key] for key in SHOP_FIELDS if key in data}
        record = ShopRecord(id=_new_id(), owner_id=owner_id, **values)
        self.shops[owner_id] = record
        return record

    def get_shop(self, owner_id: str) -> Optional[ShopRecord]:
        return self.shops.get(owner_id)

    def update_shop(self, owner_id: str, changes: dict) -> Optional[ShopRecord]:
        shop = self.shops.get(owner_id)
        if not shop:
            return None
        for key in SHOP_FIELDS:
            if key in changes:
                setattr(shop, key, changes[key])
        shop.updated_at = _now()
        return shop

    def create_category(self, owner_id: str, title: str) -> CategoryRecord:
        record = CategoryRecord(id=_new_id(), owner_id=owner_id, title=title)
        self.categories[record.id] = record
        return record

    def list_categories(self, owner_id: str) -> list[CategoryRecord]:
        return [c for c in self.categories.values() if c.owner_id == owner_id]

    def get_category(
        self, owner_id: str, category_id: str
    ) -> Optional[CategoryRecord]:
        category = self.categories.get(category_id)
        if category and category.owner_id == owner_id:
            return category
        return None

    def update_category(
        self, owner_id: str, category_id: str, changes: dict
    ) -> Optional[CategoryRecord]:
        category = self.get_category(owner_id, category_id)
        if not category:
            return None
        for key in CATEGORY_FIELDS:
            if key in changes:
                setattr(category, key, changes[key])
        category.updated_at = _now()
        return category

    def delete_category(self, owner_id: str, category_id: str) -> bool:
        if not self.get_category(owner_id, category_id):
            return False
        del self.categories[category_id]
        return True

    def get_category_sequence(self, owner_id: str) -> list[str]:
        return list(self.category_sequences.get(owner_id, []))

    def append_to_category_sequence(self, owner_id: str, category_id: str) -> None:
        ids = self.category_sequences.setdefault(owner_id, [])
        if category_id not in ids:
            ids.append(category_id)

    def set_category_sequence(self, owner_id: str, category_ids: list[str]) -> None:
        self.category_sequences[owner_id] = list(category_ids)

    def remove_from_category_sequence(self, owner_id: str, category_id: str) -> bool:
        ids = self.category_sequences.get(owner_id)
        if ids is None or category_id not in ids:
            return False
        self.category_sequences[owner_id] = [i for i in ids if i != category_id]
        return True

    def create_product(
        self, owner_id: str, category_id: str, data: dict
    ) -> ProductRecord:
        values = {
            key: data[key]
            for key in PRODUCT_FIELDS
            if key in data and key != "category_id"
        }
        record = ProductRecord(
            id=_new_id(), owner_id=owner_id, category_id=category_id, **values
        )
        self.products[record.id] = record
        return record

    def list_products_in_category(
        self, owner_id: str, category_id: str
    ) -> list[ProductRecord]:
        return [
            p
            for p in self.products.values()
            if p.owner_id == owner_id and p.category_id == category_id
        ]

    def get_product(self, owner_id: str, product_id: str) -> Optional[ProductRecord]:
        product = self.products.get(product_id)
        if product and product.owner_id == owner_id:
            return product
        return None

    def get_products_by_ids(
        self, owner_id: str, product_ids: Iterable[str]
    ) -> dict[str, ProductRecord]:
        found: dict[str, ProductRecord] = {}
        for product_id in product_ids:
            product = self.get_product(owner_id, product_id)
            if product:
                found[product_id] = product
        return found

    def update_product(
        self, owner_id: str, product_id: str, changes: dict
    ) -> Optional[ProductRecord]:
        product = self.get_product(owner_id, product_id)
        if not product:
            return None
        for key in PRODUCT_FIELDS:
            if key in changes:
                setattr(product, key, changes[key])
        product.updated_at = _now()
        return product

    def delete_product(self, owner_id: str, product_id: str) -> bool:
        if not self.get_product(owner_id, product_id):
            return False
        del self.products[product_id]
        return True

    def get_product_sequence(
        self, owner_id: str, category_id: str
    ) -> Optional[list[str]]:
        ids = self.product_sequences.get((owner_id, category_id))
        return list(ids) if ids is not None else None

    def append_to_product_sequence(
        self, owner_id: str, category_id: str, product_id: str
    ) -> None:
        ids = self.product_sequences.setdefault((owner_id, category_id), [])
        if product_id not in ids:
            ids.append(product_id)

    def set_product_sequence(
        self, owner_id: str, category_id: str, product_ids: list[str]
    ) -> None:
        self.product_sequences[(owner_id, category_id)] = list(product_ids)

    def remove_from_product_sequence(
        self, owner_id: str, category_id: str, product_id: str
    ) -> bool:
        key = (owner_id, category_id)
        ids = self.product_sequences.get(key)
        if ids is None:
            return False
        self.product_sequences[key] = [i for i in ids if i != product_id]
        return True

    def delete_product_sequence(self, owner_id: str, category_id: str) -> None:
        self.product_sequences.pop((owner_id, category_id), None)

    def create_order(self, data: dict) -> OrderRecord:
        record = OrderRecord(
            id=_new_id(),
            owner_id=data["owner_id"],
            user_id=data["user_id"],
            pickup_id=data["pickup_id"],
            items=dict(data["items"]),
            product_ids=list(data["product_ids"]),
            order_status=data["order_status"],
            order_date=data["order_date"],
            total=data["total"],
        )
        self.orders[record.id] = record
        return record

    def list_orders(self, owner_id: str) -> list[OrderRecord]:
        return [o for o in self.orders.values() if o.owner_id == owner_id]

    def list_new_orders(self, owner_id: str) -> list[OrderRecord]:
        orders = [
            o
            for o in self.list_orders(owner_id)
            if o.order_status == OrderStatus.NEW_ORDER
        ]
        return sorted(orders, key=lambda o: o.order_date)

    def list_past_orders(self, owner_id: str) -> list[OrderRecord]:
        orders = [
            o
            for o in self.list_orders(owner_id)
            if o.order_status != OrderStatus.NEW_ORDER
        ]
        return sorted(orders, key=lambda o: o.order_date, reverse=True)

    def list_user_orders(self, user_id: str) -> list[OrderRecord]:
        orders = [o for o in self.orders.values() if o.user_id == user_id]
        return sorted(orders, key=lambda o: o.order_date, reverse=True)

    def get_order(self, owner_id: str, order_id: str) -> Optional[OrderRecord]:
        order = self.orders.get(order_id)
        if order and order.owner_id == owner_id:
            return order
        return None

    def update_order_status(
        self, owner_id: str, order_id: str, status: OrderStatus
    ) -> bool:
        order = self.get_order(owner_id, order_id)
        if not order:
            return False
        order.order_status = status
        order.updated_at = _now()
        return True


class SqlDbClient:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for SqlDbClient")
        self.engine = create_engine(
            database_url,
            future=True,
            pool_pre_ping=True,
            pool_recycle=1800,
        )
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    def ping(self) -> bool:
        try:
            with self.Session() as session:
                session.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError:
            logger.exception("Database ping failed")
            return False

    # Row conversion

    def _to_shop(self, row: "ShopRow") -> ShopRecord:
        return ShopRecord(
            id=row.id,
            owner_id=row.owner_id,
            title=row.title,
            image_url=row.image_url,
            image_path=row.image_path,
            prefecture=row.prefecture,
            city=row.city,
            street_address=row.street_address,
            description=row.description,
            building=row.building,
            is_visible=row.is_visible,
            is_order_accepting=row.is_order_accepting,
            created_at=_as_utc(row.created_at),
            updated_at=_as_utc(row.updated_at),
        )

    def _to_category(self, row: "CategoryRow") -> CategoryRecord:
        return CategoryRecord(
            id=row.id,
            owner_id=row.owner_id,
            title=row.title,
            created_at=_as_utc(row.created_at),
            updated_at=_as_utc(row.updated_at),
        )

    def _to_product(self, row: "ProductRow") -> ProductRecord:
        return ProductRecord(
            id=row.id,
            owner_id=row.owner_id,
            category_id=row.category_id,
            title=row.title,
            image_url=row.image_url,
            image_path=row.image_path,
            price=row.price,
            description=row.description,
            is_visible=row.is_visible,
            is_order_accepting=row.is_order_accepting,
            created_at=_as_utc(row.created_at),
            updated_at=_as_utc(row.updated_at),
        )

    def _to_order(self, row: "OrderRow") -> OrderRecord:
        return OrderRecord(
            id=row.id,
            owner_id=row.owner_id,
            user_id=row.user_id,
            pickup_id=row.pickup_id,
            items={key: int(value) for key, value in (row.items or {}).items()},
            product_ids=[str(i) for i in (row.product_ids or [])],
            order_status=OrderStatus.from_string(row.order_status),
            order_date=_as_utc(row.order_date),
            total=row.total,
            created_at=_as_utc(row.created_at),
            updated_at=_as_utc(row.updated_at),
        )

    # Shop

    def create_shop(self, owner_id: str, data: dict) -> ShopRecord:
        now = _now()
        values = {key: data[key] for key in SHOP_FIELDS if key in data}
        with self.Session() as session:
            existing = session.execute(
                select(ShopRow.id).where(ShopRow.owner_id == owner_id)
            ).first()
            if existing:
                raise ShopAlreadyExistsError(owner_id)
            row = ShopRow(
                id=_new_id(),
                owner_id=owner_id,
                created_at=now,
                updated_at=now,
                **values,
            )
            session.add(row)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ShopAlreadyExistsError(owner_id) from exc
            session.refresh(row)
            return self._to_shop(row)

    def get_shop(self, owner_id: str) -> Optional[ShopRecord]:
        with self.Session() as session:
            row = session.execute(
                select(ShopRow).where(ShopRow.owner_id == owner_id)
            ).scalar_one_or_none()
            return self._to_shop(row) if row else None

    def update_shop(self, owner_id: str, changes: dict) -> Optional[ShopRecord]:
        with self.Session() as session:
            row = session.execute(
                select(ShopRow).where(ShopRow.owner_id == owner_id)
            ).scalar_one_or_none()
            if not row:
                return None
            for key in SHOP_FIELDS:
                if key in changes:
                    setattr(row, key, changes[key])
            row.updated_at = _now()
            session.commit()
            session.refresh(row)
            return self._to_shop(row)

    # Categories

    def _category_row(
        self, session: Session, owner_id: str, category_id: str
    ) -> Optional["CategoryRow"]:
        return session.execute(
            select(CategoryRow).where(
                CategoryRow.owner_id == owner_id, CategoryRow.id == category_id
            )
        ).scalar_one_or_none()

    def create_category(self, owner_id: str, title: str) -> CategoryRecord:
        now = _now()
        with self.Session() as session:
            row = CategoryRow(
                id=_new_id(),
                owner_id=owner_id,
                title=title,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return self._to_category(row)

    def list_categories(self, owner_id: str) -> list[CategoryRecord]:
        with self.Session() as session:
            rows = (
                session.execute(
                    select(CategoryRow).where(CategoryRow.owner_id == owner_id)
                )
                .scalars()
                .all()
            )
            return [self._to_category(row) for row in rows]

    def get_category(
        self, owner_id: str, category_id: str
    ) -> Optional[CategoryRecord]:
        with self.Session() as session:
            row = self._category_row(session, owner_id, category_id)
            return self._to_category(row) if row else None

    def update_category(
        self, owner_id: str, category_id: str, changes: dict
    ) -> Optional[CategoryRecord]:
        with self.Session() as session:
            row = self._category_row(session, owner_id, category_id)
            if not row:
                return None
            for key in CATEGORY_FIELDS:
                if key in changes:
                    setattr(row, key, changes[key])
            row.updated_at = _now()
            session.commit()
            session.refresh(row)
            return self._to_category(row)

    def delete_category(self, owner_id: str, category_id: str) -> bool:
        with self.Session() as session:
            row = self._category_row(session, owner_id, category_id)
            if not row:
                return False
            session.delete(row)
            session.commit()
            return True

    # Category sequence

    def get_category_sequence(self, owner_id: str) -> list[str]:
        with self.Session() as session:
            row = session.get(CategorySequenceRow, owner_id)
            return list(row.category_ids or []) if row else []

    def append_to_category_sequence(self, owner_id: str, category_id: str) -> None:
        with self.Session() as session:
            row = session.get(CategorySequenceRow, owner_id)
            if row:
                ids = list(row.category_ids or [])
                if category_id not in ids:
                    row.category_ids = ids + [category_id]
            else:
                session.add(
                    CategorySequenceRow(owner_id=owner_id, category_ids=[category_id])
                )
            session.commit()

    def set_category_sequence(self, owner_id: str, category_ids: list[str]) -> None:
        with self.Session() as session:
            row = session.get(CategorySequenceRow, owner_id)
            if row:
                row.category_ids = list(category_ids)
            else:
                session.add(
                    CategorySequenceRow(
                        owner_id=owner_id, category_ids=list(category_ids)
                    )
                )
            session.commit()

    def remove_from_category_sequence(self, owner_id: str, category_id: str) -> bool:
        with self.Session() as session:
            row = session.get(CategorySequenceRow, owner_id)
            if not row or category_id not in (row.category_ids or []):
                return False
            row.category_ids = [i for i in row.category_ids if i != category_id]
            session.commit()
            return True

    # Products

    def _product_row(
        self, session: Session, owner_id: str, product_id: str
    ) -> Optional["ProductRow"]:
        return session.execute(
            select(ProductRow).where(
                ProductRow.owner_id == owner_id, ProductRow.id == product_id
            )
        ).scalar_one_or_none()

    def create_product(
        self, owner_id: str, category_id: str, data: dict
    ) -> ProductRecord:
        now = _now()
        values = {
            key: data[key]
            for key in PRODUCT_FIELDS
            if key in data and key != "category_id"
        }
        with self.Session() as session:
            row = ProductRow(
                id=_new_id(),
                owner_id=owner_id,
                category_id=category_id,
                created_at=now,
                updated_at=now,
                **values,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return self._to_product(row)

    def list_products_in_category(
        self, owner_id: str, category_id: str
    ) -> list[ProductRecord]:
        with self.Session() as session:
            rows = (
                session.execute(
                    select(ProductRow).where(
                        ProductRow.owner_id == owner_id,
                        ProductRow.category_id == category_id,
                    )
                )
                .scalars()
                .all()
            )
            return [self._to_product(row) for row in rows]

    def get_product(self, owner_id: str, product_id: str) -> Optional[ProductRecord]:
        with self.Session() as session:
            row = self._product_row(session, owner_id, product_id)
            return self._to_product(row) if row else None

    def get_products_by_ids(
        self, owner_id: str, product_ids: Iterable[str]
    ) -> dict[str, ProductRecord]:
        ids = list(set(product_ids))
        if not ids:
            return {}
        with self.Session() as session:
            rows = (
                session.execute(
                    select(ProductRow).where(
                        ProductRow.owner_id == owner_id, ProductRow.id.in_(ids)
                    )
                )
                .scalars()
                .all()
            )
            return {row.id: self._to_product(row) for row in rows}

    def update_product(
        self, owner_id: str, product_id: str, changes: dict
    ) -> Optional[ProductRecord]:
        with self.Session() as session:
            row = self._product_row(session, owner_id, product_id)
            if not row:
                return None
            for key in PRODUCT_FIELDS:
                if key in changes:
                    setattr(row, key, changes[key])
            row.updated_at = _now()
            session.commit()
            session.refresh(row)
            return self._to_product(row)

    def delete_product(self, owner_id: str, product_id: str) -> bool:
        with self.Session() as session:
            row = self._product_row(session, owner_id, product_id)
            if not row:
                return False
            session.delete(row)
            session.commit()
            return True

    # Product sequences

    def _product_sequence_row(
        self, session: Session, owner_id: str, category_id: str
    ) -> Optional["ProductSequenceRow"]:
        return session.execute(
            select(ProductSequenceRow).where(
                ProductSequenceRow.owner_id == owner_id,
                ProductSequenceRow.category_id == category_id,
            )
        ).scalar_one_or_none()

    def get_product_sequence(
        self, owner_id: str, category_id: str
    ) -> Optional[list[str]]:
        with self.Session() as session:
            row = self._product_sequence_row(session, owner_id, category_id)
            return list(row.product_ids or []) if row else None

    def append_to_product_sequence(
        self, owner_id: str, category_id: str, product_id: str
    ) -> None:
        with self.Session() as session:
            row = self._product_sequence_row(session, owner_id, category_id)
            if row:
                ids = list(row.product_ids or [])
                if product_id not in ids:
                    row.product_ids = ids + [product_id]
            else:
                session.add(
                    ProductSequenceRow(
                        owner_id=owner_id,
                        category_id=category_id,
                        product_ids=[product_id],
                    )
                )
            session.commit()

    def set_product_sequence(
        self, owner_id: str, category_id: str, product_ids: list[str]
    ) -> None:
        with self.Session() as session:
            row = self._product_sequence_row(session, owner_id, category_id)
            if row:
                row.product_ids = list(product_ids)
            else:
                session.add(
                    ProductSequenceRow(
                        owner_id=owner_id,
                        category_id=category_id,
                        product_ids=list(product_ids),
                    )
                )
            session.commit()

    def remove_from_product_sequence(
        self, owner_id: str, category_id: str, product_id: str
    ) -> bool:
        with self.Session() as session:
            row = self._product_sequence_row(session, owner_id, category_id)
            if not row:
                return False
            row.product_ids = [i for i in (row.product_ids or []) if i != product_id]
            session.commit()
            return True

    def delete_product_sequence(self, owner_id: str, category_id: str) -> None:
        with self.Session() as session:
            row = self._product_sequence_row(session, owner_id, category_id)
            if row:
                session.delete(row)
                session.commit()

    # Orders

    def create_order(self, data: dict) -> OrderRecord:
        now = _now()
        with self.Session() as session:
            row = OrderRow(
                id=_new_id(),
                owner_id=data["owner_id"],
                user_id=data["user_id"],
                pickup_id=data["pickup_id"],
                items=dict(data["items"]),
                product_ids=list(data["product_ids"]),
                order_status=data["order_status"].value,
                order_date=data["order_date"],
                total=data["total"],
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return self._to_order(row)

    def _list_orders(self, *criteria, order_by=None) -> list[OrderRecord]:
        with self.Session() as session:
            stmt = select(OrderRow).where(*criteria)
            if order_by is not None:
                stmt = stmt.order_by(order_by)
            rows = session.execute(stmt).scalars().all()
            return [self._to_order(row) for row in rows]

    def list_orders(self, owner_id: str) -> list[OrderRecord]:
        return self._list_orders(OrderRow.owner_id == owner_id)

    def list_new_orders(self, owner_id: str) -> list[OrderRecord]:
        return self._list_orders(
            OrderRow.owner_id == owner_id,
            OrderRow.order_status == OrderStatus.NEW_ORDER.value,
            order_by=OrderRow.order_date.asc(),
        )

    def list_past_orders(self, owner_id: str) -> list[OrderRecord]:
        return self._list_orders(
            OrderRow.owner_id == owner_id,
            OrderRow.order_status != OrderStatus.NEW_ORDER.value,
            order_by=OrderRow.order_date.desc(),
        )

    def list_user_orders(self, user_id: str) -> list[OrderRecord]:
        return self._list_orders(
            OrderRow.user_id == user_id,
            order_by=OrderRow.order_date.desc(),
        )

    def get_order(self, owner_id: str, order_id: str) -> Optional[OrderRecord]:
        with self.Session() as session:
            row = session.execute(
                select(OrderRow).where(
                    OrderRow.owner_id == owner_id, OrderRow.id == order_id
                )
            ).scalar_one_or_none()
            return self._to_order(row) if row else None

    def update_order_status(
        self, owner_id: str, order_id: str, status: OrderStatus
    ) -> bool:
        with self.Session() as session:
            updated = (
                session.query(OrderRow)
                .filter(OrderRow.owner_id == owner_id, OrderRow.id == order_id)
                .update(
                    {
                        OrderRow.order_status: status.value,
                        OrderRow.updated_at: _now(),
                    },
                    synchronize_session=False,
                )
            )
            session.commit()
            return bool(updated)


Base = declarative_base()


class ShopRow(Base):
    __tablename__ = "shops"

    id = Column(String, primary_key=True)
    owner_id = Column(String(255), nullable=False, unique=True)
    title = Column(String(255), nullable=False)
    image_url = Column(String(2048), nullable=False)
    image_path = Column(String(1024), nullable=False)
    description = Column(String(1000), nullable=True)
    prefecture = Column(String(10), nullable=False)
    city = Column(String(100), nullable=False)
    street_address = Column(String(200), nullable=False)
    building = Column(String(200), nullable=True)
    is_visible = Column(Boolean, nullable=False, default=False)
    is_order_accepting = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class CategoryRow(Base):
    __tablename__ = "categories"

    id = Column(String, primary_key=True)
    owner_id = Column(String(255), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class CategorySequenceRow(Base):
    __tablename__ = "category_sequence"

    owner_id = Column(String(255), primary_key=True)
    category_ids = Column(JSON, nullable=False, default=list)


class ProductRow(Base):
    __tablename__ = "products"

    id = Column(String, primary_key=True)
    owner_id = Column(String(255), nullable=False, index=True)
    category_id = Column(String(255), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    image_url = Column(String(2048), nullable=False)
    image_path = Column(String(1024), nullable=False)
    description = Column(String(1000), nullable=True)
    price = Column(Integer, nullable=False)
    is_visible = Column(Boolean, nullable=False, default=False)
    is_order_accepting = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class ProductSequenceRow(Base):
    __tablename__ = "product_sequences"
    __table_args__ = (UniqueConstraint("owner_id", "category_id"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner_id = Column(String(255), nullable=False)
    category_id = Column(String(255), nullable=False)
    product_ids = Column(JSON, nullable=False, default=list)


class OrderRow(Base):
    __tablename__ = "orders"

    id = Column(String, primary_key=True)
    owner_id = Column(String(255), nullable=False, index=True)
    user_id = Column(String(255), nullable=False, index=True)
    pickup_id = Column(String(64), nullable=False)
    items = Column(JSON, nullable=False)
    product_ids = Column(JSON, nullable=False)
    order_status = Column(String(32), nullable=False, index=True)
    order_date = Column(DateTime(timezone=True), nullable=False)
    total = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)
