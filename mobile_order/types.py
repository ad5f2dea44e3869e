"""
Shared enums and constants for shops, menus and orders.
"""

from __future__ import annotations

from enum import Enum


class OrderStatus(Enum):
    NEW_ORDER = "newOrder"
    SERVED = "served"
    CANCELLED = "cancelled"

    @classmethod
    def from_string(cls, value: str) -> "OrderStatus":
        """Parse a wire value, raising ValueError for unknown statuses."""
        try:
            return cls(value)
        except ValueError:
            allowed = ", ".join(status.value for status in cls)
            raise ValueError(
                f"Unknown order status {value!r} (expected one of: {allowed})"
            ) from None

    @property
    def display_name(self) -> str:
        return ORDER_STATUS_DISPLAY_NAMES[self]


ORDER_STATUS_DISPLAY_NAMES = {
    OrderStatus.NEW_ORDER: "新規注文",
    OrderStatus.SERVED: "提供済み",
    OrderStatus.CANCELLED: "キャンセル",
}


class ImageFolder(str, Enum):
    SHOPS = "shops"
    PRODUCTS = "products"


PREFECTURES = (
    "北海道",
    "青森県",
    "岩手県",
    "宮城県",
    "秋田県",
    "山形県",
    "福島県",
    "茨城県",
    "栃木県",
    "群馬県",
    "埼玉県",
    "千葉県",
    "東京都",
    "神奈川県",
    "新潟県",
    "富山県",
    "石川県",
    "福井県",
    "山梨県",
    "長野県",
    "岐阜県",
    "静岡県",
    "愛知県",
    "三重県",
    "滋賀県",
    "京都府",
    "大阪府",
    "兵庫県",
    "奈良県",
    "和歌山県",
    "鳥取県",
    "島根県",
    "岡山県",
    "広島県",
    "山口県",
    "徳島県",
    "香川県",
    "愛媛県",
    "高知県",
    "福岡県",
    "佐賀県",
    "長崎県",
    "熊本県",
    "大分県",
    "宮崎県",
    "鹿児島県",
    "沖縄県",
)

DEFAULT_PREFECTURE = "東京都"

TITLE_MAX_LENGTH = 255
DESCRIPTION_MAX_LENGTH = 1000
CITY_MAX_LENGTH = 100
ADDRESS_MAX_LENGTH = 200
