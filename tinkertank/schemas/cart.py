# tinkertank/schemas/cart.py
"""
Cart schemas.

``CartState`` is the explicit cart object carried through a request-scoped
cart session; it is persisted as JSON by a ``CartStorage`` backend. Selected
days are local calendar dates at the item's location.
"""

from datetime import date, datetime, time
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ._strict_base import StrictModel, StrictRequestModel


class CartStudent(BaseModel):
    id: str
    name: str
    birthdate: Optional[date] = None
    allergies: Optional[str] = None
    medical_notes: Optional[str] = None


class CartItem(BaseModel):
    id: str
    product_id: str
    product_name: str
    product_type: str
    location_id: str
    dates: List[date] = Field(default_factory=list)
    start_time: Optional[time] = None
    price_per_day: Decimal
    students: List[CartStudent] = Field(default_factory=list)
    created_at: datetime

    @property
    def day_keys(self) -> List[str]:
        return [day.isoformat() for day in self.dates]

    @property
    def total_price(self) -> Decimal:
        return self.price_per_day * len(self.dates) * len(self.students)


class CartState(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    session_id: str
    items: List[CartItem] = Field(default_factory=list)
    updated_at: Optional[datetime] = None

    def get_item(self, item_id: str) -> Optional[CartItem]:
        return next((item for item in self.items if item.id == item_id), None)


class CartItemCreate(StrictRequestModel):
    product_id: str
    location_id: str
    dates: List[date] = Field(..., min_length=1, description="Local calendar days")
    start_time: Optional[time] = Field(
        default=None, description="Local start time for parties and weekly sessions"
    )

    @field_validator("dates")
    @classmethod
    def _unique_sorted(cls, value: List[date]) -> List[date]:
        return sorted(set(value))


class CartStudentCreate(StrictRequestModel):
    name: str = Field(..., min_length=1, max_length=200)
    birthdate: Optional[date] = None
    allergies: Optional[str] = None
    medical_notes: Optional[str] = None


class CartSummary(StrictModel):
    subtotal: Decimal
    gst: Decimal
    total: Decimal
    item_count: int
    student_count: int


class CartValidationError(StrictModel):
    item_id: str
    field: str
    message: str


class CartValidationWarning(StrictModel):
    item_id: str
    message: str


class CartValidation(StrictModel):
    is_valid: bool
    errors: List[CartValidationError] = []
    warnings: List[CartValidationWarning] = []


class CartResponse(StrictModel):
    session_id: str
    items: List[CartItem]
    summary: CartSummary
