"""
Order document and its denormalized snapshots.
Field names on the wire and in the store are the camelCase names (deliveryPrice, validationCode, ...);
Python attributes are snake_case and mapped with aliases.
"""
from datetime import datetime
from typing import ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

Role = Literal[
    "client",
    "restaurateur",
    "deliverer",
    "developer",
    "commercial",
    "technician",
    "admin",
]

OrderStatus = Literal[
    "validating",
    "preparating",
    "waitingDelivery",
    "delivering",
    "completed",
    "cancelled",
]


class Document(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_document(self) -> dict:
        """JSON-ready dict with the stored (aliased) field names."""
        return self.model_dump(mode="json", by_alias=True)


class UserSnapshot(Document):
    id: str
    firstname: str = ""
    lastname: str = ""
    email: str = ""
    phone: str = ""
    role: Role


class Position(Document):
    lon: float
    lat: float


class OpeningHours(Document):
    from_: datetime = Field(..., alias="from")
    to: datetime


class RestaurantSnapshot(Document):
    id: str
    owner: UserSnapshot
    name: str
    description: str = ""
    address: str
    position: Position
    opening_hours: list[OpeningHours] = Field(default_factory=list, alias="openingHours")
    types: list[str] = Field(default_factory=list)
    is_closed: bool = Field(default=False, alias="isClosed")


class Product(Document):
    id: str
    name: str
    price: float = Field(..., ge=0)
    description: str = ""
    image: str = ""
    restaurant: str


class Menu(Document):
    id: str
    name: str
    price: float = Field(..., ge=0)
    description: str = ""
    image: str = ""
    products: list[Product] = Field(default_factory=list)
    restaurant: str


class OrderDraft(Document):
    """What the ordering workflow supplies; id, status and client are assigned by submit."""
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    restaurant: RestaurantSnapshot
    products: list[Product] = Field(default_factory=list)
    menus: list[Menu] = Field(default_factory=list)
    price: float = Field(..., ge=0)
    delivery_price: float = Field(..., ge=0, alias="deliveryPrice")
    commission_price: float = Field(..., ge=0, alias="commissionPrice")
    address: str
    position: Position
    comment: str | None = None


class Order(Document):
    id: str
    status: OrderStatus
    client: UserSnapshot
    restaurant: RestaurantSnapshot
    deliverer: UserSnapshot | None = None
    products: list[Product] = Field(default_factory=list)
    menus: list[Menu] = Field(default_factory=list)
    price: float = Field(..., ge=0)
    delivery_price: float = Field(..., ge=0, alias="deliveryPrice")
    commission_price: float = Field(..., ge=0, alias="commissionPrice")
    address: str
    position: Position
    comment: str | None = None
    validation_code: int | None = Field(default=None, alias="validationCode")


class OrderPatch(Document):
    """Administrative partial update. Only fields that are explicitly set are applied."""
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    status: OrderStatus | None = None
    deliverer: UserSnapshot | None = None
    products: list[Product] | None = None
    menus: list[Menu] | None = None
    price: float | None = Field(default=None, ge=0)
    delivery_price: float | None = Field(default=None, ge=0, alias="deliveryPrice")
    commission_price: float | None = Field(default=None, ge=0, alias="commissionPrice")
    address: str | None = None
    position: Position | None = None
    comment: str | None = None
    validation_code: int | None = Field(default=None, alias="validationCode")

    # Only these may be cleared with an explicit null; every other field is required on an Order.
    NULLABLE: ClassVar[frozenset[str]] = frozenset({"deliverer", "comment", "validation_code"})

    @model_validator(mode="after")
    def _no_null_required_fields(self) -> "OrderPatch":
        cleared = sorted(
            name for name in self.model_fields_set
            if name not in self.NULLABLE and getattr(self, name) is None
        )
        if cleared:
            raise ValueError(f"cannot set required field(s) to null: {', '.join(cleared)}")
        return self

    def changes(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_unset=True)
