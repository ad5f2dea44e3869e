"""
Business logic between the HTTP routes and the repository/storage layers.

Routes call these functions with validated schemas; failures are raised as
ServiceError subclasses and turned into HTTP responses by the app's
exception handlers.
"""

from __future__ import annotations

import io
import logging
import random
import time
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Optional, Sequence

from PIL import Image, UnidentifiedImageError

from mobile_order.db import (
    CategoryRecord,
    DbClient,
    OrderRecord,
    ProductRecord,
    ShopAlreadyExistsError,
    ShopRecord,
)
from mobile_order.schemas import (
    CategoryCreate,
    CategoryUpdate,
    OrderCreate,
    ProductCreate,
    ProductUpdate,
    ShopCreate,
    ShopUpdate,
)
from mobile_order.storage import StorageClient, build_image_path
from mobile_order.types import ImageFolder, OrderStatus

logger = logging.getLogger(__name__)

PICKUP_ID_CHARS = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
DECLARED_IMAGE_FORMATS = {
    "image/jpeg": "JPEG",
    "image/jpg": "JPEG",
    "image/png": "PNG",
    "image/gif": "GIF",
    "image/webp": "WEBP",
}


class ServiceError(Exception):
    status_code = 500

    def __init__(self, message: str, details: Optional[list] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class NotFoundError(ServiceError):
    status_code = 404


class InvalidRequestError(ServiceError):
    status_code = 400


class ConflictError(ServiceError):
    status_code = 400


@dataclass
class ImageUpload:
    filename: str
    content_type: str
    data: bytes


# Sorting


def sort_by_sequence(items: Sequence, sequence: Sequence[str]) -> list:
    """
    Order records by an explicit id sequence.

    Without a sequence, records are newest-updated first. Otherwise records
    follow the sequence (unknown ids skipped) and anything absent from it is
    appended, newest-updated first.
    """
    if not sequence:
        return sorted(items, key=lambda item: item.updated_at, reverse=True)

    by_id = {item.id: item for item in items}
    ordered = []
    seen: set[str] = set()
    missing = []
    for item_id in sequence:
        if item_id in seen:
            continue
        seen.add(item_id)
        if item_id in by_id:
            ordered.append(by_id[item_id])
        else:
            missing.append(item_id)
    if missing:
        logger.warning("Sequence references missing ids: %s", missing)

    leftovers = sorted(
        (item for item in items if item.id not in seen),
        key=lambda item: item.updated_at,
        reverse=True,
    )
    return ordered + leftovers


# Images


def validate_image(image: ImageUpload, max_bytes: int) -> None:
    if not (image.content_type or "").startswith("image/"):
        raise InvalidRequestError("Only image files can be uploaded")
    if not image.data:
        raise InvalidRequestError("Image file is empty")
    if len(image.data) > max_bytes:
        raise InvalidRequestError(
            f"Image file is too large (max {max_bytes // (1024 * 1024)}MB)"
        )

    expected = DECLARED_IMAGE_FORMATS.get(image.content_type)
    if expected:
        actual = sniff_image_format(image.data)
        if actual != expected:
            logger.warning(
                "Image %s declared as %s but decodes as %s",
                image.filename,
                image.content_type,
                actual,
            )


def sniff_image_format(data: bytes) -> Optional[str]:
    """Pillow's name for the encoded format, or None when it is not an image."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            return img.format
    except (UnidentifiedImageError, OSError):
        return None


def store_image(
    storage: StorageClient,
    folder: ImageFolder,
    owner_id: str,
    image: ImageUpload,
    max_bytes: int,
) -> tuple[str, str]:
    """Validate and upload an image, returning (image_url, image_path)."""
    validate_image(image, max_bytes)
    path = build_image_path(
        folder, owner_id, image.filename or "image", int(time.time() * 1000)
    )
    url = storage.upload_bytes(path, image.data, image.content_type)
    return url, path


def is_owned_path(folder: ImageFolder, owner_id: str, path: str) -> bool:
    """True when the storage key sits under the owner's prefix in the folder."""
    return path.startswith(f"{ImageFolder(folder).value}/{owner_id}/")


def _require_owned_path(folder: ImageFolder, owner_id: str, path: str) -> None:
    if not is_owned_path(folder, owner_id, path):
        raise InvalidRequestError(
            "imagePath must point to one of your own images",
            [{"field": "imagePath", "value": path}],
        )


def _delete_owned_image(
    storage: StorageClient, folder: ImageFolder, owner_id: str, path: Optional[str]
) -> None:
    if not path:
        return
    if not is_owned_path(folder, owner_id, path):
        logger.warning("Not deleting %s: outside the images of %s", path, owner_id)
        return
    storage.delete(path)


def _resolve_image(
    storage: StorageClient,
    folder: ImageFolder,
    owner_id: str,
    image: Optional[ImageUpload],
    image_url: Optional[str],
    image_path: Optional[str],
    max_bytes: int,
) -> tuple[str, str]:
    if image is not None:
        return store_image(storage, folder, owner_id, image, max_bytes)
    if image_url and image_path:
        _require_owned_path(folder, owner_id, image_path)
        return image_url, image_path
    raise InvalidRequestError("An image file or imageUrl and imagePath are required")


def _previous_image_path(
    folder: ImageFolder,
    owner_id: str,
    stored_path: Optional[str],
    old_image_path: Optional[str],
) -> Optional[str]:
    if old_image_path and old_image_path != stored_path:
        if not is_owned_path(folder, owner_id, old_image_path):
            logger.warning(
                "Ignoring oldImagePath %s from %s", old_image_path, owner_id
            )
            return stored_path
        return old_image_path
    return stored_path


# Categories


def get_sorted_categories(db: DbClient, owner_id: str) -> list[CategoryRecord]:
    return sort_by_sequence(
        db.list_categories(owner_id), db.get_category_sequence(owner_id)
    )


def get_category(db: DbClient, owner_id: str, category_id: str) -> CategoryRecord:
    category = db.get_category(owner_id, category_id)
    if not category:
        raise NotFoundError("Category not found")
    return category


def create_category(
    db: DbClient, owner_id: str, payload: CategoryCreate
) -> CategoryRecord:
    category = db.create_category(owner_id, payload.title)
    db.append_to_category_sequence(owner_id, category.id)
    logger.info("Created category %s for %s", category.id, owner_id)
    return category


def update_category(
    db: DbClient, owner_id: str, category_id: str, payload: CategoryUpdate
) -> CategoryRecord:
    changes = payload.model_dump(exclude_none=True)
    category = db.update_category(owner_id, category_id, changes)
    if not category:
        raise NotFoundError("Category not found")
    return category


def remove_category(
    db: DbClient, storage: StorageClient, owner_id: str, category_id: str
) -> None:
    """Delete a category together with its products, their images and its sequence."""
    get_category(db, owner_id, category_id)

    products = db.list_products_in_category(owner_id, category_id)
    for product in products:
        db.delete_product(owner_id, product.id)
        _delete_owned_image(storage, ImageFolder.PRODUCTS, owner_id, product.image_path)
    db.delete_product_sequence(owner_id, category_id)
    db.delete_category(owner_id, category_id)
    db.remove_from_category_sequence(owner_id, category_id)
    logger.info(
        "Deleted category %s and %d products for %s",
        category_id,
        len(products),
        owner_id,
    )


def get_category_sequence(db: DbClient, owner_id: str) -> list[str]:
    return db.get_category_sequence(owner_id)


def update_category_sequence(
    db: DbClient, owner_id: str, category_ids: Iterable[str]
) -> None:
    ids = list(category_ids)
    if not all(isinstance(i, str) for i in ids):
        raise InvalidRequestError("categoryIds must be a list of strings")
    db.set_category_sequence(owner_id, ids)


# Products


def get_sorted_products_in_category(
    db: DbClient, owner_id: str, category_id: str
) -> list[ProductRecord]:
    products = db.list_products_in_category(owner_id, category_id)
    sequence = db.get_product_sequence(owner_id, category_id) or []
    return sort_by_sequence(products, sequence)


def get_product(db: DbClient, owner_id: str, product_id: str) -> ProductRecord:
    product = db.get_product(owner_id, product_id)
    if not product:
        raise NotFoundError("Product not found")
    return product


def create_product(
    db: DbClient,
    storage: StorageClient,
    owner_id: str,
    category_id: str,
    payload: ProductCreate,
    image: Optional[ImageUpload],
    max_image_bytes: int,
) -> ProductRecord:
    get_category(db, owner_id, category_id)
    image_url, image_path = _resolve_image(
        storage,
        ImageFolder.PRODUCTS,
        owner_id,
        image,
        payload.image_url,
        payload.image_path,
        max_image_bytes,
    )
    data = payload.model_dump()
    data.update(image_url=image_url, image_path=image_path)

    product = db.create_product(owner_id, category_id, data)
    db.append_to_product_sequence(owner_id, category_id, product.id)
    logger.info("Created product %s in category %s", product.id, category_id)
    return product


def update_product(
    db: DbClient,
    storage: StorageClient,
    owner_id: str,
    product_id: str,
    payload: ProductUpdate,
    image: Optional[ImageUpload],
    max_image_bytes: int,
    old_image_path: Optional[str] = None,
) -> ProductRecord:
    product = get_product(db, owner_id, product_id)
    changes = payload.model_dump(exclude_none=True)

    new_category_id = changes.get("category_id")
    moved = new_category_id is not None and new_category_id != product.category_id
    if moved:
        get_category(db, owner_id, new_category_id)
    if image is None and "image_path" in changes:
        _require_owned_path(ImageFolder.PRODUCTS, owner_id, changes["image_path"])

    previous_path = None
    if image is not None:
        image_url, image_path = store_image(
            storage, ImageFolder.PRODUCTS, owner_id, image, max_image_bytes
        )
        changes.update(image_url=image_url, image_path=image_path)
        previous_path = _previous_image_path(
            ImageFolder.PRODUCTS, owner_id, product.image_path, old_image_path
        )

    updated = db.update_product(owner_id, product_id, changes)
    if not updated:
        raise NotFoundError("Product not found")

    if previous_path != updated.image_path:
        _delete_owned_image(storage, ImageFolder.PRODUCTS, owner_id, previous_path)
    if moved:
        db.remove_from_product_sequence(owner_id, product.category_id, product_id)
        db.append_to_product_sequence(owner_id, new_category_id, product_id)
        logger.info(
            "Moved product %s from %s to %s",
            product_id,
            product.category_id,
            new_category_id,
        )
    return updated


def remove_product(
    db: DbClient, storage: StorageClient, owner_id: str, product_id: str
) -> None:
    product = get_product(db, owner_id, product_id)
    db.delete_product(owner_id, product_id)
    db.remove_from_product_sequence(owner_id, product.category_id, product_id)
    _delete_owned_image(storage, ImageFolder.PRODUCTS, owner_id, product.image_path)
    logger.info("Deleted product %s", product_id)


def get_product_sequence(db: DbClient, owner_id: str, category_id: str) -> list[str]:
    return db.get_product_sequence(owner_id, category_id) or []


def update_product_sequence(
    db: DbClient, owner_id: str, category_id: str, product_ids: Iterable[str]
) -> None:
    ids = list(product_ids)
    if not all(isinstance(i, str) for i in ids):
        raise InvalidRequestError("productIds must be a list of strings")
    db.set_product_sequence(owner_id, category_id, ids)


# Shop


def get_shop(db: DbClient, owner_id: str) -> ShopRecord:
    shop = db.get_shop(owner_id)
    if not shop:
        raise NotFoundError("Shop not found")
    return shop


def create_shop(
    db: DbClient,
    storage: StorageClient,
    owner_id: str,
    payload: ShopCreate,
    image: Optional[ImageUpload],
    max_image_bytes: int,
) -> ShopRecord:
    if db.get_shop(owner_id):
        raise ConflictError("A shop already exists for this account")

    image_url, image_path = _resolve_image(
        storage,
        ImageFolder.SHOPS,
        owner_id,
        image,
        payload.image_url,
        payload.image_path,
        max_image_bytes,
    )
    data = payload.model_dump()
    data.update(image_url=image_url, image_path=image_path)
    try:
        shop = db.create_shop(owner_id, data)
    except ShopAlreadyExistsError as exc:
        if image is not None:
            storage.delete(image_path)
        raise ConflictError("A shop already exists for this account") from exc
    logger.info("Created shop %s for %s", shop.id, owner_id)
    return shop


def update_shop(
    db: DbClient,
    storage: StorageClient,
    owner_id: str,
    payload: ShopUpdate,
    image: Optional[ImageUpload],
    max_image_bytes: int,
    old_image_path: Optional[str] = None,
) -> ShopRecord:
    shop = get_shop(db, owner_id)
    changes = payload.model_dump(exclude_none=True)
    if image is None and "image_path" in changes:
        _require_owned_path(ImageFolder.SHOPS, owner_id, changes["image_path"])

    previous_path = None
    if image is not None:
        image_url, image_path = store_image(
            storage, ImageFolder.SHOPS, owner_id, image, max_image_bytes
        )
        changes.update(image_url=image_url, image_path=image_path)
        previous_path = _previous_image_path(
            ImageFolder.SHOPS, owner_id, shop.image_path, old_image_path
        )

    updated = db.update_shop(owner_id, changes)
    if not updated:
        raise NotFoundError("Shop not found")
    if previous_path != updated.image_path:
        _delete_owned_image(storage, ImageFolder.SHOPS, owner_id, previous_path)
    return updated


# Orders


def generate_pickup_id(length: int = 6) -> str:
    return "".join(random.choices(PICKUP_ID_CHARS, k=length))


def parse_order_status(value: str) -> OrderStatus:
    try:
        return OrderStatus.from_string(value)
    except ValueError as exc:
        raise InvalidRequestError(str(exc)) from exc


def _ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def create_order(db: DbClient, caller_id: str, payload: OrderCreate) -> OrderRecord:
    status = (
        parse_order_status(payload.order_status)
        if payload.order_status
        else OrderStatus.NEW_ORDER
    )
    data = {
        "owner_id": payload.owner_id or caller_id,
        "user_id": payload.user_id or caller_id,
        "pickup_id": payload.pickup_id or generate_pickup_id(),
        "items": dict(payload.items),
        "product_ids": list(payload.product_ids or payload.items.keys()),
        "order_status": status,
        "order_date": _ensure_utc(payload.order_date or datetime.now(timezone.utc)),
        "total": payload.total,
    }
    order = db.create_order(data)
    logger.info("Created order %s for shop owner %s", order.id, order.owner_id)
    return order


def enrich_orders(db: DbClient, orders: Sequence[OrderRecord]) -> list[dict]:
    """Attach productTitles to each order; ids of deleted products map to themselves."""
    wanted: dict[str, set[str]] = defaultdict(set)
    for order in orders:
        wanted[order.owner_id].update(order.product_ids)
        wanted[order.owner_id].update(order.items.keys())

    titles: dict[str, dict[str, str]] = {}
    for owner_id, product_ids in wanted.items():
        products = db.get_products_by_ids(owner_id, product_ids)
        titles[owner_id] = {pid: p.title for pid, p in products.items()}

    enriched = []
    for order in orders:
        known = titles.get(order.owner_id, {})
        ids = list(dict.fromkeys([*order.product_ids, *order.items.keys()]))
        payload = order.as_dict()
        payload["productTitles"] = {pid: known.get(pid, pid) for pid in ids}
        enriched.append(payload)
    return enriched


def get_orders(db: DbClient, owner_id: str) -> list[dict]:
    return enrich_orders(db, db.list_orders(owner_id))


def get_new_orders(db: DbClient, owner_id: str) -> list[dict]:
    return enrich_orders(db, db.list_new_orders(owner_id))


def get_past_orders(db: DbClient, owner_id: str) -> list[dict]:
    return enrich_orders(db, db.list_past_orders(owner_id))


def get_user_orders(db: DbClient, user_id: str) -> list[dict]:
    return enrich_orders(db, db.list_user_orders(user_id))


def get_order(db: DbClient, owner_id: str, order_id: str) -> dict:
    order = db.get_order(owner_id, order_id)
    if not order:
        raise NotFoundError("Order not found")
    return enrich_orders(db, [order])[0]


def change_order_status(
    db: DbClient, owner_id: str, order_id: str, raw_status: str
) -> OrderStatus:
    status = parse_order_status(raw_status)
    if not db.update_order_status(owner_id, order_id, status):
        raise NotFoundError("Order not found")
    logger.info(
        "Order %s is now %s (%s)", order_id, status.value, status.display_name
    )
    return status
