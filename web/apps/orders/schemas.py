"""Pydantic schemas for orders.

This module exposes the request/validation schemas used by the orders API
(checkout from the bot, transitions from the dashboard, payment proof
attachment) and the read schema returned for orders.
"""

import re
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from .domain import OrderStatus


TELEGRAM_ID_RE = re.compile(r"^-?[0-9]{1,20}$")
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MAX_ITEMS = 100


def _blank_to_none(v: Optional[str]) -> Optional[str]:
    if v is None:
        return None
    v = v.strip()
    return v or None


class CheckoutItemIn(BaseModel):
    """Input schema for a single checkout line.

    Attributes:
        product_id: Product being bought; must belong to the store.
        variant_id: Optional variant of that product.
        quantity: Positive integer indicating units requested.
    """

    product_id: UUID
    variant_id: Optional[UUID] = None
    quantity: int = Field(gt=0, le=10_000)


class CustomerIn(BaseModel):
    """Telegram identity of the customer placing the order."""

    telegram_id: str = Field(min_length=1, max_length=32)
    username: Optional[str] = Field(default=None, max_length=100)
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    email: Optional[str] = Field(default=None, max_length=254)

    @field_validator("telegram_id")
    @classmethod
    def validate_telegram_id(cls, v: str) -> str:
        """Validate the numeric Telegram chat id.

        Raises:
            ValueError: When the id is not a (possibly negative) integer.
        """
        v2 = v.strip()
        if not TELEGRAM_ID_RE.match(v2):
            raise ValueError("Invalid telegram_id")
        return v2

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: Optional[str]) -> Optional[str]:
        v2 = _blank_to_none(v)
        if v2 is not None and not EMAIL_RE.match(v2):
            raise ValueError("Invalid email")
        return v2


class CheckoutDTO(BaseModel):
    """Schema for creating an order from the bot.

    Attributes:
        store_id: Store the customer is buying from.
        customer: Telegram identity of the buyer.
        items: Lines to order (1 to ``MAX_ITEMS``).
        notes: Optional free text for the store.
        client_request_id: Optional bot-side id; a repeated id returns the
            order created by the first request.
    """

    store_id: UUID
    customer: CustomerIn
    items: list[CheckoutItemIn] = Field(min_length=1, max_length=MAX_ITEMS)
    notes: Optional[str] = Field(default=None, max_length=2000)
    client_request_id: Optional[str] = Field(default=None, max_length=200)


class TransitionDTO(BaseModel):
    """Schema for the verification / transition endpoint.

    Attributes:
        status: Requested target status.
        reason: Optional rejection or cancellation reason.
        tracking_number: Optional tracking number (SHIPPED).
        carrier: Optional carrier name (SHIPPED).
        payment_proof: Optional proof reference recorded on PAID.
    """

    status: OrderStatus
    reason: Optional[str] = Field(default=None, max_length=1000)
    tracking_number: Optional[str] = Field(default=None, max_length=100)
    carrier: Optional[str] = Field(default=None, max_length=100)
    payment_proof: Optional[str] = Field(default=None, max_length=500)

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, v):
        return v.strip().upper() if isinstance(v, str) else v

    @field_validator("reason", "tracking_number", "carrier", "payment_proof")
    @classmethod
    def strip_blank(cls, v: Optional[str]) -> Optional[str]:
        return _blank_to_none(v)


class PaymentProofDTO(BaseModel):
    """Schema used by the bot to attach a payment proof to a pending order."""

    telegram_id: str = Field(min_length=1, max_length=32)
    reference: str = Field(min_length=1, max_length=500)

    @field_validator("reference")
    @classmethod
    def validate_reference(cls, v: str) -> str:
        v2 = v.strip()
        if not v2:
            raise ValueError("Empty reference")
        return v2


class OrderItemReadDTO(BaseModel):
    id: int
    product_id: Optional[UUID] = None
    variant_id: Optional[UUID] = None
    product_name: str
    quantity: int
    unit_price: Decimal


class OrderReadDTO(BaseModel):
    """Read schema for orders returned by the API."""

    id: UUID
    order_number: str
    store_id: UUID
    customer_telegram_id: str
    status: OrderStatus
    total_amount: Decimal
    currency: str
    payment_proof: Optional[str] = None
    rejection_reason: Optional[str] = None
    cancellation_reason: Optional[str] = None
    tracking_number: Optional[str] = None
    carrier: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    paid_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    items: list[OrderItemReadDTO] = Field(default_factory=list)
    available_transitions: list[OrderStatus] = Field(default_factory=list)
