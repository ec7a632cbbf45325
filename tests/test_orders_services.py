import uuid

import pytest
from fastapi import HTTPException

from app.models.orders import Order, OrderStatus
from app.schemas.orders import OrderRead
from app.services import orders as orders_service
from app.services.orders import ALLOWED_TRANSITIONS, InvalidOrderTransition, can_transition

DISALLOWED_PAIRS = [
    (from_status, to_status)
    for from_status in OrderStatus
    for to_status in OrderStatus
    if to_status not in ALLOWED_TRANSITIONS[from_status]
]


def _order(db_session, status):
    order = Order(user_id=uuid.uuid4(), status=status, total=1000)
    db_session.add(order)
    db_session.commit()
    db_session.refresh(order)
    return order


def test_every_status_has_a_transition_entry():
    assert set(ALLOWED_TRANSITIONS) == set(OrderStatus)


def test_terminal_statuses_allow_nothing():
    for status in (OrderStatus.completed, OrderStatus.cancelled, OrderStatus.refunded, OrderStatus.failed):
        assert ALLOWED_TRANSITIONS[status] == set()


def test_same_status_is_rejected(db_session):
    order = _order(db_session, OrderStatus.delivered)
    orders_service.orders.transition(db_session, str(order.id), OrderStatus.completed)
    db_session.refresh(order)
    completed_at = order.completed_at

    with pytest.raises(InvalidOrderTransition):
        orders_service.orders.transition(db_session, str(order.id), OrderStatus.completed)

    db_session.refresh(order)
    assert order.status == OrderStatus.completed
    assert order.completed_at == completed_at
    assert not can_transition(OrderStatus.pending, OrderStatus.pending)


def test_happy_path_sets_completed_at(db_session, order):
    for status in ("confirmed", "processing", "shipped", "delivered", "completed"):
        orders_service.orders.transition(db_session, str(order.id), status)

    db_session.refresh(order)
    assert order.status == OrderStatus.completed
    assert order.completed_at is not None


def test_cancel_sets_cancelled_at(db_session, order):
    updated = orders_service.orders.transition(db_session, str(order.id), OrderStatus.cancelled)

    assert updated.cancelled_at is not None


def test_completed_order_cannot_return_to_pending(db_session):
    order = _order(db_session, OrderStatus.delivered)
    orders_service.orders.transition(db_session, str(order.id), OrderStatus.completed)
    db_session.refresh(order)
    completed_at = order.completed_at

    with pytest.raises(InvalidOrderTransition) as exc_info:
        orders_service.orders.transition(db_session, str(order.id), OrderStatus.pending)

    db_session.refresh(order)
    assert exc_info.value.from_status == OrderStatus.completed
    assert exc_info.value.to_status == OrderStatus.pending
    assert order.status == OrderStatus.completed
    assert order.completed_at == completed_at


@pytest.mark.parametrize("from_status, to_status", DISALLOWED_PAIRS)
def test_disallowed_transition_leaves_order_unchanged(db_session, from_status, to_status):
    order = _order(db_session, from_status)

    with pytest.raises(InvalidOrderTransition):
        orders_service.orders.transition(db_session, str(order.id), to_status)

    db_session.refresh(order)
    assert order.status == from_status
    assert order.completed_at is None
    assert order.cancelled_at is None


def test_unknown_status_is_rejected(db_session, order):
    with pytest.raises(HTTPException) as exc_info:
        orders_service.orders.transition(db_session, str(order.id), "teleported")

    assert exc_info.value.status_code == 400


def test_missing_order_is_404(db_session):
    with pytest.raises(HTTPException) as exc_info:
        orders_service.orders.get(db_session, str(uuid.uuid4()))

    assert exc_info.value.status_code == 404


def test_list_response_returns_read_models(db_session, order):
    response = orders_service.orders.list_response(
        db_session, "pending", None, "created_at", "desc", 10, 0
    )

    assert response.count == 1
    assert response.limit == 10
    assert isinstance(response.items[0], OrderRead)
    assert response.items[0].id == order.id
