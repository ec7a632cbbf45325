from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.db import get_db
from app.schemas.common import ListResponse
from app.schemas.orders import OrderRead, OrderStatusUpdate
from app.services import orders as orders_service

router = APIRouter(prefix="/orders")


@router.get("", response_model=ListResponse[OrderRead], tags=["orders"])
def list_orders(
    status: str | None = None,
    user_id: str | None = None,
    order_by: str = Query(default="created_at"),
    order_dir: str = Query(default="desc", pattern="^(asc|desc)$"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    return orders_service.orders.list_response(
        db, status, user_id, order_by, order_dir, limit, offset
    )


@router.get("/{order_id}", response_model=OrderRead, tags=["orders"])
def get_order(order_id: str, db: Session = Depends(get_db)):
    return orders_service.orders.get(db, order_id)


@router.post("/{order_id}/status", response_model=OrderRead, tags=["orders"])
def update_order_status(
    order_id: str,
    payload: OrderStatusUpdate,
    db: Session = Depends(get_db),
):
    return orders_service.orders.transition(db, order_id, payload.status)
