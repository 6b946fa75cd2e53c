"""
Order API Routes
"""
from datetime import datetime
from decimal import Decimal
from typing import List

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.actor import get_actor, require_operator
from app.core.exceptions import ValidationException
from app.core.validation import (
    CoordinateValidator,
    address_validator,
    promo_code_validator,
    sanitized_text_validator,
)
from app.db.database import get_db
from app.db.models.order import OrderStatus, PaymentMethod
from app.db.models.order_audit_log import OrderAuditAction
from app.domain.services.order_audit import get_order_audit_trail
from app.domain.services.order_service import OrderLine, OrderService
from app.state_machine.order_states import Actor

router = APIRouter()


class OrderItemIn(BaseModel):
    product_id: int
    quantity: int = Field(ge=1, le=100)


class OrderCreate(BaseModel):
    """Schema for placing an order; prices come from the catalog, never from the client"""
    customer_id: int
    restaurant_id: int
    items: List[OrderItemIn] = Field(min_length=1)
    shipping_address: str
    payment_method: PaymentMethod = PaymentMethod.COD
    promo_code: str | None = None
    distance_km: float | None = None
    delivery_latitude: float | None = None
    delivery_longitude: float | None = None
    notes: str | None = None
    # operator-only override of the commission rate
    commission_rate: Decimal | None = Field(default=None, ge=0, le=100)

    @field_validator("shipping_address")
    @classmethod
    def validate_address(cls, v: str) -> str:
        return address_validator(v)

    @field_validator("promo_code")
    @classmethod
    def validate_promo_code(cls, v: str | None) -> str | None:
        return promo_code_validator(v)

    @field_validator("notes")
    @classmethod
    def sanitize_notes(cls, v: str | None) -> str | None:
        return sanitized_text_validator(v, max_length=500)

    @field_validator("delivery_longitude")
    @classmethod
    def validate_coordinates(cls, v: float | None, info) -> float | None:
        lat = info.data.get("delivery_latitude")
        if v is None or lat is None:
            return v
        is_valid, error = CoordinateValidator.validate(lat, v)
        if not is_valid:
            raise ValueError(error)
        return v


class OrderItemOut(BaseModel):
    product_id: int
    name: str
    quantity: int
    unit_price: Decimal


class OrderResponse(BaseModel):
    id: int
    order_number: str
    customer_id: int
    restaurant_id: int
    rider_id: int | None
    rider_accepted_at: datetime | None
    status: OrderStatus
    payment_method: PaymentMethod
    items: List[OrderItemOut]
    shipping_address: str
    subtotal: Decimal
    delivery_fee: Decimal
    service_fee: Decimal
    tax: Decimal
    discount: Decimal
    gateway_fee: Decimal
    commission_rate: Decimal
    commission_source: str | None
    commission_amount: Decimal
    restaurant_earning: Decimal
    rider_gross_earning: Decimal
    rider_net_earning: Decimal
    platform_net_profit: Decimal
    total_price: Decimal
    quoted_distance_km: float
    distance_km: float | None
    distance_fallback_used: bool
    is_paid: bool
    is_settled: bool
    cancellation_reason: str | None
    rider_rating: int | None
    created_at: datetime | None
    delivered_at: datetime | None
    version: int

    model_config = {"from_attributes": True}


class StatusUpdate(BaseModel):
    status: str
    reason: str | None = None
    # completion distance, used for rider pay when status is delivered
    distance_km: float | None = None

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: str) -> str:
        return OrderStatus.parse(v).value

    @field_validator("reason")
    @classmethod
    def sanitize_reason(cls, v: str | None) -> str | None:
        return sanitized_text_validator(v, max_length=500)


class AssignRiderRequest(BaseModel):
    rider_id: int
    reassign: bool = False


class ReasonRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=500)

    @field_validator("reason")
    @classmethod
    def sanitize_reason(cls, v: str) -> str:
        return sanitized_text_validator(v, max_length=500)


class RatingRequest(BaseModel):
    rating: int = Field(ge=1, le=5)
    review: str | None = None

    @field_validator("review")
    @classmethod
    def sanitize_review(cls, v: str | None) -> str | None:
        return sanitized_text_validator(v, max_length=1000)


class AvailableOrderResponse(BaseModel):
    order_id: int
    order_number: str
    restaurant_id: int
    shipping_address: str
    estimated_reward: str
    distance_km: float
    distance_fallback_used: bool


class AuditEntryResponse(BaseModel):
    id: int
    action: OrderAuditAction
    from_status: str | None
    to_status: str | None
    actor_role: str
    actor_id: int | None
    details: dict | None
    created_at: datetime

    model_config = {"from_attributes": True}


@router.post(
    "/",
    response_model=OrderResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Place an order",
)
async def create_order(
    data: OrderCreate,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    service = OrderService(db)
    return await service.create_order(
        customer_id=data.customer_id,
        restaurant_id=data.restaurant_id,
        items=[OrderLine(i.product_id, i.quantity) for i in data.items],
        shipping_address=data.shipping_address,
        payment_method=data.payment_method,
        promo_code=data.promo_code,
        distance_km=data.distance_km,
        delivery_latitude=data.delivery_latitude,
        delivery_longitude=data.delivery_longitude,
        notes=data.notes,
        commission_rate=data.commission_rate,
        actor=actor,
    )


@router.get("/", response_model=List[OrderResponse], summary="List orders")
async def list_orders(
    restaurant_id: int | None = None,
    rider_id: int | None = None,
    customer_id: int | None = None,
    status_filter: str | None = Query(default=None, alias="status"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    parsed = None
    if status_filter:
        try:
            parsed = OrderStatus.parse(status_filter)
        except ValueError as exc:
            raise ValidationException(str(exc), field="status") from exc
    return await OrderService(db).list_orders(
        restaurant_id=restaurant_id,
        rider_id=rider_id,
        customer_id=customer_id,
        status=parsed,
        limit=limit,
        offset=offset,
    )


@router.get(
    "/available",
    response_model=List[AvailableOrderResponse],
    summary="Ready orders waiting for a rider",
)
async def list_available_orders(
    limit: int = Query(default=50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
):
    available = await OrderService(db).list_available_orders(limit)
    return [
        AvailableOrderResponse(
            order_id=a.order.id,
            order_number=a.order.order_number,
            restaurant_id=a.order.restaurant_id,
            shipping_address=a.order.shipping_address,
            estimated_reward=str(a.reward.net),
            distance_km=a.reward.distance.km,
            distance_fallback_used=a.reward.distance.fallback_used,
        )
        for a in available
    ]


@router.get("/{order_id}", response_model=OrderResponse, summary="Get an order")
async def get_order(order_id: int, db: AsyncSession = Depends(get_db)):
    return await OrderService(db).get_order(order_id)


@router.patch("/{order_id}/status", response_model=OrderResponse, summary="Change order status")
async def update_order_status(
    order_id: int,
    data: StatusUpdate,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    return await OrderService(db).update_status(
        order_id,
        OrderStatus(data.status),
        actor,
        reason=data.reason,
        distance_km=data.distance_km,
    )


@router.post("/{order_id}/assign", response_model=OrderResponse, summary="Assign a rider")
async def assign_rider(
    order_id: int,
    data: AssignRiderRequest,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    return await OrderService(db).assign_rider(order_id, data.rider_id, actor, reassign=data.reassign)


@router.post("/{order_id}/unassign", response_model=OrderResponse, summary="Remove the rider")
async def unassign_rider(
    order_id: int,
    actor: Actor = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
):
    return await OrderService(db).unassign_rider(order_id, actor)


@router.post("/{order_id}/cancel", response_model=OrderResponse, summary="Cancel an order")
async def cancel_order(
    order_id: int,
    data: ReasonRequest,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    return await OrderService(db).cancel_order(order_id, data.reason, actor)


@router.post("/{order_id}/refund", response_model=OrderResponse, summary="Refund an order")
async def refund_order(
    order_id: int,
    data: ReasonRequest,
    actor: Actor = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
):
    return await OrderService(db).refund_order(order_id, data.reason, actor)


@router.post(
    "/{order_id}/rating",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    summary="Rate the rider of a delivered order",
)
async def rate_rider(
    order_id: int,
    data: RatingRequest,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    await OrderService(db).rate_rider(order_id, data.rating, actor, review=data.review)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{order_id}/audit", response_model=List[AuditEntryResponse], summary="Order audit trail")
async def get_audit_trail(
    order_id: int,
    actor: Actor = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
):
    await OrderService(db).get_order(order_id)
    return await get_order_audit_trail(db, order_id)
