"""
HTTP routes for the mobile order API. Every route here requires a bearer token.
"""

from __future__ import annotations

from typing import Optional, Type, TypeVar

from fastapi import APIRouter, Depends, File, Form, UploadFile
from fastapi.exceptions import RequestValidationError
from pydantic import BaseModel, ValidationError

from mobile_order import services
from mobile_order.db import DbClient
from mobile_order.dependencies import (
    get_current_owner_id,
    get_db_client,
    get_max_image_bytes,
    get_storage_client,
)
from mobile_order.schemas import (
    CategoryCreate,
    CategoryResponse,
    CategorySequenceResponse,
    CategorySequenceUpdate,
    CategoryUpdate,
    ErrorResponse,
    IdMessageResponse,
    IdResponse,
    MessageResponse,
    OrderCreate,
    OrderResponse,
    OrderStatusUpdate,
    ProductCreate,
    ProductResponse,
    ProductSequenceResponse,
    ProductSequenceUpdate,
    ProductUpdate,
    ShopCreate,
    ShopResponse,
    ShopUpdate,
)
from mobile_order.services import ImageUpload
from mobile_order.storage import StorageClient

router = APIRouter(
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
    }
)

SchemaT = TypeVar("SchemaT", bound=BaseModel)


def _parse_form(schema: Type[SchemaT], fields: dict) -> SchemaT:
    """Validate multipart fields with a body schema; absent fields are dropped."""
    values = {key: value for key, value in fields.items() if value is not None}
    try:
        return schema.model_validate(values)
    except ValidationError as exc:
        raise RequestValidationError(exc.errors(include_url=False)) from exc


def _read_image(upload: Optional[UploadFile], max_bytes: int) -> Optional[ImageUpload]:
    """Read at most max_bytes + 1 bytes; validate_image rejects anything longer."""
    if upload is None or not upload.filename:
        return None
    return ImageUpload(
        filename=upload.filename,
        content_type=upload.content_type or "",
        data=upload.file.read(max_bytes + 1),
    )


# Categories


@router.post("/categories", response_model=IdResponse, status_code=201)
def create_category(
    payload: CategoryCreate,
    owner_id: str = Depends(get_current_owner_id),
    db: DbClient = Depends(get_db_client),
):
    category = services.create_category(db, owner_id, payload)
    return IdResponse(id=category.id)


@router.get("/categories", response_model=list[CategoryResponse])
def list_categories(
    owner_id: str = Depends(get_current_owner_id),
    db: DbClient = Depends(get_db_client),
):
    """Categories in the owner's chosen order."""
    return [c.as_dict() for c in services.get_sorted_categories(db, owner_id)]


@router.get("/categories/{category_id}", response_model=CategoryResponse)
def get_category(
    category_id: str,
    owner_id: str = Depends(get_current_owner_id),
    db: DbClient = Depends(get_db_client),
):
    return services.get_category(db, owner_id, category_id).as_dict()


@router.put("/categories/{category_id}", response_model=IdResponse)
def update_category(
    category_id: str,
    payload: CategoryUpdate,
    owner_id: str = Depends(get_current_owner_id),
    db: DbClient = Depends(get_db_client),
):
    category = services.update_category(db, owner_id, category_id, payload)
    return IdResponse(id=category.id)


@router.delete("/categories/{category_id}", response_model=MessageResponse)
def delete_category(
    category_id: str,
    owner_id: str = Depends(get_current_owner_id),
    db: DbClient = Depends(get_db_client),
    storage: StorageClient = Depends(get_storage_client),
):
    """Deletes the category, every product in it and their images."""
    services.remove_category(db, storage, owner_id, category_id)
    return MessageResponse(message="Category deleted")


@router.get("/category-sequence", response_model=CategorySequenceResponse)
def get_category_sequence(
    owner_id: str = Depends(get_current_owner_id),
    db: DbClient = Depends(get_db_client),
):
    return CategorySequenceResponse(
        category_ids=services.get_category_sequence(db, owner_id)
    )


@router.put("/category-sequence", response_model=MessageResponse)
def update_category_sequence(
    payload: CategorySequenceUpdate,
    owner_id: str = Depends(get_current_owner_id),
    db: DbClient = Depends(get_db_client),
):
    services.update_category_sequence(db, owner_id, payload.category_ids)
    return MessageResponse(message="Category order updated")


# Products


@router.post(
    "/products/category/{category_id}", response_model=IdResponse, status_code=201
)
def create_product(
    category_id: str,
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    price: Optional[str] = Form(None),
    is_visible: Optional[str] = Form(None, alias="isVisible"),
    is_order_accepting: Optional[str] = Form(None, alias="isOrderAccepting"),
    image_url: Optional[str] = Form(None, alias="imageUrl"),
    image_path: Optional[str] = Form(None, alias="imagePath"),
    image_file: Optional[UploadFile] = File(None, alias="imageFile"),
    owner_id: str = Depends(get_current_owner_id),
    db: DbClient = Depends(get_db_client),
    storage: StorageClient = Depends(get_storage_client),
    max_image_bytes: int = Depends(get_max_image_bytes),
):
    payload = _parse_form(
        ProductCreate,
        {
            "title": title,
            "description": description,
            "price": price,
            "isVisible": is_visible,
            "isOrderAccepting": is_order_accepting,
            "imageUrl": image_url,
            "imagePath": image_path,
        },
    )
    product = services.create_product(
        db,
        storage,
        owner_id,
        category_id,
        payload,
        _read_image(image_file, max_image_bytes),
        max_image_bytes,
    )
    return IdResponse(id=product.id)


@router.get("/products/category/{category_id}", response_model=list[ProductResponse])
def list_products_in_category(
    category_id: str,
    owner_id: str = Depends(get_current_owner_id),
    db: DbClient = Depends(get_db_client),
):
    products = services.get_sorted_products_in_category(db, owner_id, category_id)
    return [p.as_dict() for p in products]


@router.get("/products/{product_id}", response_model=ProductResponse)
def get_product(
    product_id: str,
    owner_id: str = Depends(get_current_owner_id),
    db: DbClient = Depends(get_db_client),
):
    return services.get_product(db, owner_id, product_id).as_dict()


@router.put("/products/{product_id}", response_model=IdMessageResponse)
def update_product(
    product_id: str,
    category_id: Optional[str] = Form(None, alias="categoryId"),
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    price: Optional[str] = Form(None),
    is_visible: Optional[str] = Form(None, alias="isVisible"),
    is_order_accepting: Optional[str] = Form(None, alias="isOrderAccepting"),
    image_url: Optional[str] = Form(None, alias="imageUrl"),
    image_path: Optional[str] = Form(None, alias="imagePath"),
    old_image_path: Optional[str] = Form(None, alias="oldImagePath"),
    image_file: Optional[UploadFile] = File(None, alias="imageFile"),
    owner_id: str = Depends(get_current_owner_id),
    db: DbClient = Depends(get_db_client),
    storage: StorageClient = Depends(get_storage_client),
    max_image_bytes: int = Depends(get_max_image_bytes),
):
    payload = _parse_form(
        ProductUpdate,
        {
            "categoryId": category_id,
            "title": title,
            "description": description,
            "price": price,
            "isVisible": is_visible,
            "isOrderAccepting": is_order_accepting,
            "imageUrl": image_url,
            "imagePath": image_path,
        },
    )
    product = services.update_product(
        db,
        storage,
        owner_id,
        product_id,
        payload,
        _read_image(image_file, max_image_bytes),
        max_image_bytes,
        old_image_path=old_image_path or None,
    )
    return IdMessageResponse(id=product.id, message="Product updated")


@router.delete("/products/{product_id}", response_model=MessageResponse)
def delete_product(
    product_id: str,
    owner_id: str = Depends(get_current_owner_id),
    db: DbClient = Depends(get_db_client),
    storage: StorageClient = Depends(get_storage_client),
):
    services.remove_product(db, storage, owner_id, product_id)
    return MessageResponse(message="Product deleted")


@router.get(
    "/product-sequences/category/{category_id}",
    response_model=ProductSequenceResponse,
)
def get_product_sequence(
    category_id: str,
    owner_id: str = Depends(get_current_owner_id),
    db: DbClient = Depends(get_db_client),
):
    return ProductSequenceResponse(
        product_ids=services.get_product_sequence(db, owner_id, category_id)
    )


@router.put("/product-sequences", response_model=MessageResponse)
def update_product_sequence(
    payload: ProductSequenceUpdate,
    owner_id: str = Depends(get_current_owner_id),
    db: DbClient = Depends(get_db_client),
):
    services.update_product_sequence(
        db, owner_id, payload.category_id, payload.product_ids
    )
    return MessageResponse(message="Product order updated")


# Shop


@router.post("/shop", response_model=IdResponse, status_code=201)
def create_shop(
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    prefecture: Optional[str] = Form(None),
    city: Optional[str] = Form(None),
    street_address: Optional[str] = Form(None, alias="streetAddress"),
    building: Optional[str] = Form(None),
    is_visible: Optional[str] = Form(None, alias="isVisible"),
    is_order_accepting: Optional[str] = Form(None, alias="isOrderAccepting"),
    image_url: Optional[str] = Form(None, alias="imageUrl"),
    image_path: Optional[str] = Form(None, alias="imagePath"),
    image_file: Optional[UploadFile] = File(None, alias="imageFile"),
    owner_id: str = Depends(get_current_owner_id),
    db: DbClient = Depends(get_db_client),
    storage: StorageClient = Depends(get_storage_client),
    max_image_bytes: int = Depends(get_max_image_bytes),
):
    payload = _parse_form(
        ShopCreate,
        {
            "title": title,
            "description": description,
            "prefecture": prefecture,
            "city": city,
            "streetAddress": street_address,
            "building": building,
            "isVisible": is_visible,
            "isOrderAccepting": is_order_accepting,
            "imageUrl": image_url,
            "imagePath": image_path,
        },
    )
    shop = services.create_shop(
        db,
        storage,
        owner_id,
        payload,
        _read_image(image_file, max_image_bytes),
        max_image_bytes,
    )
    return IdResponse(id=shop.id)


@router.get("/shop", response_model=ShopResponse)
def get_shop(
    owner_id: str = Depends(get_current_owner_id),
    db: DbClient = Depends(get_db_client),
):
    return services.get_shop(db, owner_id).as_dict()


@router.put("/shop", response_model=MessageResponse)
def update_shop(
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    prefecture: Optional[str] = Form(None),
    city: Optional[str] = Form(None),
    street_address: Optional[str] = Form(None, alias="streetAddress"),
    building: Optional[str] = Form(None),
    is_visible: Optional[str] = Form(None, alias="isVisible"),
    is_order_accepting: Optional[str] = Form(None, alias="isOrderAccepting"),
    image_url: Optional[str] = Form(None, alias="imageUrl"),
    image_path: Optional[str] = Form(None, alias="imagePath"),
    old_image_path: Optional[str] = Form(None, alias="oldImagePath"),
    image_file: Optional[UploadFile] = File(None, alias="imageFile"),
    owner_id: str = Depends(get_current_owner_id),
    db: DbClient = Depends(get_db_client),
    storage: StorageClient = Depends(get_storage_client),
    max_image_bytes: int = Depends(get_max_image_bytes),
):
    payload = _parse_form(
        ShopUpdate,
        {
            "title": title,
            "description": description,
            "prefecture": prefecture,
            "city": city,
            "streetAddress": street_address,
            "building": building,
            "isVisible": is_visible,
            "isOrderAccepting": is_order_accepting,
            "imageUrl": image_url,
            "imagePath": image_path,
        },
    )
    services.update_shop(
        db,
        storage,
        owner_id,
        payload,
        _read_image(image_file, max_image_bytes),
        max_image_bytes,
        old_image_path=old_image_path or None,
    )
    return MessageResponse(message="Shop updated")


# Orders


@router.post("/orders", response_model=IdResponse, status_code=201)
def create_order(
    payload: OrderCreate,
    owner_id: str = Depends(get_current_owner_id),
    db: DbClient = Depends(get_db_client),
):
    order = services.create_order(db, owner_id, payload)
    return IdResponse(id=order.id)


@router.get("/orders", response_model=list[OrderResponse])
def list_orders(
    owner_id: str = Depends(get_current_owner_id),
    db: DbClient = Depends(get_db_client),
):
    return services.get_orders(db, owner_id)


@router.get("/orders/new", response_model=list[OrderResponse])
def list_new_orders(
    owner_id: str = Depends(get_current_owner_id),
    db: DbClient = Depends(get_db_client),
):
    """Orders waiting to be served, oldest first."""
    return services.get_new_orders(db, owner_id)


@router.get("/orders/past", response_model=list[OrderResponse])
def list_past_orders(
    owner_id: str = Depends(get_current_owner_id),
    db: DbClient = Depends(get_db_client),
):
    return services.get_past_orders(db, owner_id)


@router.get("/orders/mine", response_model=list[OrderResponse])
def list_my_orders(
    user_id: str = Depends(get_current_owner_id),
    db: DbClient = Depends(get_db_client),
):
    """Orders the caller placed as a customer, across shops."""
    return services.get_user_orders(db, user_id)


@router.get("/orders/{order_id}", response_model=OrderResponse)
def get_order(
    order_id: str,
    owner_id: str = Depends(get_current_owner_id),
    db: DbClient = Depends(get_db_client),
):
    return services.get_order(db, owner_id, order_id)


@router.put("/orders/{order_id}/status", response_model=MessageResponse)
def update_order_status(
    order_id: str,
    payload: OrderStatusUpdate,
    owner_id: str = Depends(get_current_owner_id),
    db: DbClient = Depends(get_db_client),
):
    status = services.change_order_status(db, owner_id, order_id, payload.order_status)
    return MessageResponse(message=f"Order status changed to {status.value}")
