"""
Pydantic schemas for the mobile order API. Field names are camelCase on the wire.
"""

from __future__ import annotations

from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from mobile_order.types import (
    ADDRESS_MAX_LENGTH,
    CITY_MAX_LENGTH,
    DEFAULT_PREFECTURE,
    DESCRIPTION_MAX_LENGTH,
    PREFECTURES,
    TITLE_MAX_LENGTH,
)


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True
    )


def _check_prefecture(value: Optional[str]) -> Optional[str]:
    if value is not None and value not in PREFECTURES:
        raise ValueError("有効な都道府県を選択してください")
    return value


# Categories


class CategoryCreate(CamelModel):
    title: str = Field(..., min_length=1, max_length=TITLE_MAX_LENGTH)


class CategoryUpdate(CamelModel):
    title: Optional[str] = Field(None, min_length=1, max_length=TITLE_MAX_LENGTH)


class CategoryResponse(CamelModel):
    id: str
    owner_id: str
    title: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class CategorySequenceUpdate(CamelModel):
    category_ids: list[str]


class CategorySequenceResponse(CamelModel):
    category_ids: list[str]


# Products


class ProductCreate(CamelModel):
    title: str = Field(..., min_length=1, max_length=TITLE_MAX_LENGTH)
    description: Optional[str] = Field(None, max_length=DESCRIPTION_MAX_LENGTH)
    price: int = Field(..., ge=0)
    is_visible: bool = False
    is_order_accepting: bool = False
    image_url: Optional[str] = None
    image_path: Optional[str] = None


class ProductUpdate(CamelModel):
    category_id: Optional[str] = Field(None, min_length=1)
    title: Optional[str] = Field(None, min_length=1, max_length=TITLE_MAX_LENGTH)
    description: Optional[str] = Field(None, max_length=DESCRIPTION_MAX_LENGTH)
    price: Optional[int] = Field(None, ge=0)
    is_visible: Optional[bool] = None
    is_order_accepting: Optional[bool] = None
    image_url: Optional[str] = None
    image_path: Optional[str] = None


class ProductResponse(CamelModel):
    id: str
    owner_id: str
    category_id: str
    title: str
    image_url: str
    image_path: str
    description: Optional[str] = None
    price: int
    is_visible: bool
    is_order_accepting: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ProductSequenceUpdate(CamelModel):
    category_id: str = Field(..., min_length=1)
    product_ids: list[str]


class ProductSequenceResponse(CamelModel):
    product_ids: list[str]


# Shop


class ShopCreate(CamelModel):
    title: str = Field(..., min_length=1, max_length=TITLE_MAX_LENGTH)
    description: Optional[str] = Field(None, max_length=DESCRIPTION_MAX_LENGTH)
    prefecture: str = DEFAULT_PREFECTURE
    city: str = Field(..., min_length=1, max_length=CITY_MAX_LENGTH)
    street_address: str = Field(..., min_length=1, max_length=ADDRESS_MAX_LENGTH)
    building: Optional[str] = Field(None, max_length=ADDRESS_MAX_LENGTH)
    is_visible: bool = False
    is_order_accepting: bool = False
    image_url: Optional[str] = None
    image_path: Optional[str] = None

    @field_validator("prefecture")
    @classmethod
    def validate_prefecture(cls, value: Optional[str]) -> Optional[str]:
        return _check_prefecture(value)


class ShopUpdate(CamelModel):
    title: Optional[str] = Field(None, min_length=1, max_length=TITLE_MAX_LENGTH)
    description: Optional[str] = Field(None, max_length=DESCRIPTION_MAX_LENGTH)
    prefecture: Optional[str] = None
    city: Optional[str] = Field(None, min_length=1, max_length=CITY_MAX_LENGTH)
    street_address: Optional[str] = Field(
        None, min_length=1, max_length=ADDRESS_MAX_LENGTH
    )
    building: Optional[str] = Field(None, max_length=ADDRESS_MAX_LENGTH)
    is_visible: Optional[bool] = None
    is_order_accepting: Optional[bool] = None
    image_url: Optional[str] = None
    image_path: Optional[str] = None

    @field_validator("prefecture")
    @classmethod
    def validate_prefecture(cls, value: Optional[str]) -> Optional[str]:
        return _check_prefecture(value)


class ShopResponse(CamelModel):
    id: str
    owner_id: str
    title: str
    image_url: str
    image_path: str
    description: Optional[str] = None
    prefecture: str
    city: str
    street_address: str
    building: Optional[str] = None
    is_visible: bool
    is_order_accepting: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# Orders


class OrderCreate(CamelModel):
    owner_id: Optional[str] = Field(None, min_length=1)
    user_id: Optional[str] = Field(None, min_length=1)
    pickup_id: Optional[str] = Field(None, min_length=1, max_length=64)
    items: Dict[str, int] = Field(..., min_length=1)
    product_ids: Optional[list[str]] = None
    order_status: Optional[str] = None
    order_date: Optional[datetime] = None
    total: int = Field(..., ge=0)

    @field_validator("items")
    @classmethod
    def validate_quantities(cls, value: Dict[str, int]) -> Dict[str, int]:
        for product_id, quantity in value.items():
            if quantity < 1:
                raise ValueError(f"Quantity for {product_id} must be at least 1")
        return value


class OrderStatusUpdate(CamelModel):
    order_status: str = Field(..., min_length=1)


class OrderResponse(CamelModel):
    id: str
    owner_id: str
    user_id: str
    pickup_id: str
    items: Dict[str, int]
    product_ids: list[str]
    product_titles: Dict[str, str] = Field(default_factory=dict)
    order_status: str
    order_date: datetime
    total: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# Generic responses


class IdResponse(BaseModel):
    id: str


class MessageResponse(BaseModel):
    message: str


class IdMessageResponse(BaseModel):
    id: str
    message: str


class HealthResponse(BaseModel):
    status: str
    database: bool


class ErrorResponse(BaseModel):
    message: str
    details: Optional[list] = None
