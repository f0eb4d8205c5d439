from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.deps import get_merchant_or_404, require_admin_key
from app.models.merchant import Merchant
from app.services.orders import (
    InvalidOrderStatusError,
    OrderNotFoundError,
    get_order,
    list_orders,
    serialize_order,
    update_order_status,
)

router = APIRouter(
    prefix="/api/merchants/{merchant_id}/orders",
    tags=["orders"],
    dependencies=[Depends(require_admin_key)],
)


class OrderStatusUpdate(BaseModel):
    status: str = Field(min_length=1, max_length=20)


@router.get("")
def list_merchant_orders(
    status: Optional[str] = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    merchant: Merchant = Depends(get_merchant_or_404),
    db: Session = Depends(get_db),
):
    return [serialize_order(order) for order in list_orders(db, merchant.id, status=status, limit=limit)]


@router.get("/{order_id}")
def get_merchant_order(
    order_id: int,
    merchant: Merchant = Depends(get_merchant_or_404),
    db: Session = Depends(get_db),
):
    try:
        return serialize_order(get_order(db, merchant.id, order_id))
    except OrderNotFoundError:
        raise HTTPException(status_code=404, detail="Order not found")


@router.put("/{order_id}/status")
def set_order_status(
    order_id: int,
    body: OrderStatusUpdate,
    merchant: Merchant = Depends(get_merchant_or_404),
    db: Session = Depends(get_db),
):
    try:
        order = update_order_status(db, merchant.id, order_id, body.status)
    except OrderNotFoundError:
        raise HTTPException(status_code=404, detail="Order not found")
    except InvalidOrderStatusError:
        raise HTTPException(status_code=422, detail=f"Invalid status: {body.status}")
    return serialize_order(order)
