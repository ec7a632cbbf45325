from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from app.models.orders import Order, OrderStatus
from app.schemas.orders import OrderRead
from app.services.common import (
    apply_ordering,
    apply_pagination,
    coerce_uuid,
    get_or_404,
    utcnow,
    validate_enum,
)
from app.services.response import ListResponseMixin

logger = logging.getLogger(__name__)


class InvalidOrderTransition(Exception):
    """Raised when an order status transition is not allowed."""

    def __init__(self, from_status: OrderStatus, to_status: OrderStatus):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Cannot transition order from {from_status.value} to {to_status.value}"
        )


# Valid order status transitions (from -> allowed to states)
ALLOWED_TRANSITIONS: dict[OrderStatus, set[OrderStatus]] = {
    OrderStatus.pending: {
        OrderStatus.confirmed,
        OrderStatus.processing,
        OrderStatus.cancelled,
        OrderStatus.on_hold,
        OrderStatus.failed,
    },
    OrderStatus.confirmed: {
        OrderStatus.processing,
        OrderStatus.cancelled,
        OrderStatus.on_hold,
    },
    OrderStatus.processing: {
        OrderStatus.shipped,
        OrderStatus.cancelled,
        OrderStatus.on_hold,
    },
    OrderStatus.shipped: {OrderStatus.delivered, OrderStatus.on_hold},
    OrderStatus.delivered: {OrderStatus.completed, OrderStatus.refunded},
    OrderStatus.on_hold: {
        OrderStatus.pending,
        OrderStatus.processing,
        OrderStatus.cancelled,
    },
    OrderStatus.completed: set(),
    OrderStatus.cancelled: set(),
    OrderStatus.refunded: set(),
    OrderStatus.failed: set(),
}


def can_transition(from_status: OrderStatus, to_status: OrderStatus) -> bool:
    return to_status in ALLOWED_TRANSITIONS.get(from_status, set())


class Orders(ListResponseMixin):
    read_schema = OrderRead

    @staticmethod
    def get(db: Session, order_id: str) -> Order:
        return get_or_404(db, Order, order_id)

    @staticmethod
    def transition(db: Session, order_id: str, new_status: OrderStatus | str) -> Order:
        """Validate and apply an order status transition.

        Raises:
            InvalidOrderTransition: the move is not in ``ALLOWED_TRANSITIONS``;
                the order is left untouched.
        """
        order = get_or_404(db, Order, order_id)
        new_status = validate_enum(new_status, OrderStatus, "status")
        old_status = order.status
        if not can_transition(old_status, new_status):
            logger.info(
                "Rejected order %s transition %s -> %s",
                order.id,
                old_status.value,
                new_status.value,
            )
            raise InvalidOrderTransition(old_status, new_status)

        order.status = new_status
        if new_status == OrderStatus.completed:
            order.completed_at = utcnow()
        elif new_status == OrderStatus.cancelled:
            order.cancelled_at = utcnow()
        db.commit()
        db.refresh(order)
        logger.info("Order %s moved %s -> %s", order.id, old_status.value, new_status.value)
        return order

    @staticmethod
    def list(
        db: Session,
        status: str | None = None,
        user_id: str | None = None,
        order_by: str = "created_at",
        order_dir: str = "desc",
        limit: int = 50,
        offset: int = 0,
    ):
        query = db.query(Order)
        if status:
            query = query.filter(Order.status == validate_enum(status, OrderStatus, "status"))
        if user_id:
            query = query.filter(Order.user_id == coerce_uuid(user_id))
        query = apply_ordering(
            query,
            order_by,
            order_dir,
            {"created_at": Order.created_at, "total": Order.total},
        )
        return apply_pagination(query, limit, offset).all()


orders = Orders()
