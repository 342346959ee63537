"""
Order lifecycle: creation with stock decrement, cancellation with restock,
and status transitions.

Every public function runs one transaction on the session it is given and
either commits all of its writes or rolls all of them back.
"""

import logging
from collections import OrderedDict
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from models import MAX_QUANTITY, Order, OrderItem, Product

logger = logging.getLogger(__name__)

ORDER_STATUSES = ('pending', 'confirmed', 'preparing', 'ready', 'delivered', 'cancelled')
FORWARD_FLOW = ('pending', 'confirmed', 'preparing', 'ready', 'delivered')
TERMINAL_STATUSES = ('delivered', 'cancelled')

CENT = Decimal('0.01')


class OrderError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class OrderNotFound(OrderError):
    status_code = 404

    def __init__(self, order_id: int):
        super().__init__('Order not found')
        self.order_id = order_id


class ProductUnavailable(OrderError):
    status_code = 400


class InsufficientStock(OrderError):
    status_code = 409

    def __init__(self, product_id: int, requested: int, available: int):
        super().__init__(f'Insufficient stock for product {product_id}: requested {requested}, available {available}')
        self.product_id = product_id
        self.requested = requested
        self.available = available


class PriceMismatch(OrderError):
    status_code = 409


class TotalMismatch(OrderError):
    status_code = 400


class InvalidStatus(OrderError):
    status_code = 400


class InvalidTransition(OrderError):
    status_code = 409


def _money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT)


def _merge_items(items: Iterable[dict]) -> "OrderedDict[int, dict]":
    """Collapse repeated product ids, keeping first-seen order.

    Every caller-supplied unit_price is kept so each one gets checked
    against the product price.
    """
    merged: "OrderedDict[int, dict]" = OrderedDict()
    for raw in items:
        pid = int(raw['product_id'])
        qty = int(raw['quantity'])
        if qty < 1:
            raise OrderError('Item quantity must be at least 1')
        entry = merged.setdefault(pid, {'quantity': 0, 'prices': []})
        entry['quantity'] += qty
        if entry['quantity'] > MAX_QUANTITY:
            raise OrderError(f'Item quantity for product {pid} must be at most {MAX_QUANTITY}')
        if raw.get('unit_price') is not None:
            entry['prices'].append(raw['unit_price'])
    return merged


def _load_order(session: Session, order_id: int) -> Order:
    order = session.scalar(
        select(Order)
        .options(selectinload(Order.items).selectinload(OrderItem.product))
        .where(Order.id == order_id)
    )
    if order is None:
        raise OrderNotFound(order_id)
    return order


def get_order(session: Session, order_id: int) -> Order:
    return _load_order(session, order_id)


def create_order(
    session: Session,
    user_id: int,
    business_id: int,
    items: List[dict],
    delivery_address: str,
    total_amount=None,
    delivery_instructions: Optional[str] = None,
    payment_method: str = 'cash',
) -> Order:
    """Place an order and take its quantities out of stock.

    ``items`` is a list of ``{product_id, quantity, unit_price?}``. Prices
    come from the products table; a caller-supplied ``unit_price`` or
    ``total_amount`` is only checked against them. Stock is decremented
    with a conditional update so it can never go below zero.
    """
    if not items:
        raise OrderError('Order must contain at least one item')
    merged = _merge_items(items)

    try:
        order = Order(
            user_id=user_id,
            business_id=business_id,
            total_amount=Decimal('0.00'),
            delivery_address=delivery_address,
            delivery_instructions=delivery_instructions,
            payment_method=payment_method or 'cash',
            status='pending',
        )
        session.add(order)
        session.flush()

        total = Decimal('0.00')
        for product_id, item in merged.items():
            product = session.scalar(
                select(Product).where(Product.id == product_id).with_for_update()
            )
            if (
                product is None
                or not product.is_active
                or not product.is_available
                or product.business_id != business_id
            ):
                raise ProductUnavailable(f'Product {product_id} is not available from this business')

            unit_price = _money(product.price)
            if any(_money(p) != unit_price for p in item['prices']):
                raise PriceMismatch(
                    f'Price for product {product_id} has changed: current price is {unit_price}'
                )

            session.add(OrderItem(
                order_id=order.id,
                product_id=product_id,
                quantity=item['quantity'],
                unit_price=unit_price,
            ))
            session.flush()

            result = session.execute(
                update(Product)
                .where(Product.id == product_id, Product.stock_quantity >= item['quantity'])
                .values(stock_quantity=Product.stock_quantity - item['quantity'])
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise InsufficientStock(product_id, item['quantity'], product.stock_quantity)

            total += unit_price * item['quantity']

        if total_amount is not None and _money(total_amount) != total:
            raise TotalMismatch(f'Order total {_money(total_amount)} does not match computed total {total}')

        order.total_amount = total
        session.commit()
    except (OrderError, SQLAlchemyError):
        session.rollback()
        raise

    session.expire_all()
    logger.info('Order %s created for user %s at business %s (total %s)', order.id, user_id, business_id, total)
    return _load_order(session, order.id)


def cancel_order(session: Session, order_id: int, reason: Optional[str] = None) -> Order:
    """Cancel an order and put its quantities back into stock.

    The status flip is a compare-and-set, so a second cancellation finds
    nothing to update and returns the order untouched.
    """
    try:
        now = datetime.now(timezone.utc)
        result = session.execute(
            update(Order)
            .where(Order.id == order_id, Order.status.notin_(TERMINAL_STATUSES))
            .values(status='cancelled', cancellation_reason=reason, cancelled_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            current = session.scalar(select(Order.status).where(Order.id == order_id))
            session.rollback()
            if current is None:
                raise OrderNotFound(order_id)
            if current == 'cancelled':
                logger.info('Order %s already cancelled; nothing to do', order_id)
                return _load_order(session, order_id)
            raise InvalidTransition(f'Cannot cancel an order that is {current}')

        rows = session.execute(
            select(OrderItem.product_id, OrderItem.quantity).where(OrderItem.order_id == order_id)
        ).all()
        for product_id, quantity in rows:
            session.execute(
                update(Product)
                .where(Product.id == product_id)
                .values(stock_quantity=Product.stock_quantity + quantity)
                .execution_options(synchronize_session=False)
            )
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        raise

    session.expire_all()
    logger.info('Order %s cancelled (%d line items restocked)', order_id, len(rows))
    return _load_order(session, order_id)


def check_transition(current: str, new_status: str) -> None:
    if new_status not in ORDER_STATUSES:
        raise InvalidStatus('Invalid status')
    if current == new_status:
        return
    if current in TERMINAL_STATUSES:
        raise InvalidTransition(f'Order is already {current}')
    if new_status == 'cancelled':
        return
    if FORWARD_FLOW.index(new_status) < FORWARD_FLOW.index(current):
        raise InvalidTransition(f'Cannot move order from {current} back to {new_status}')


def update_order_status(session: Session, order_id: int, new_status: str) -> Order:
    """Move an order along pending -> confirmed -> preparing -> ready -> delivered.

    Steps may be skipped but never reversed. ``cancelled`` goes through
    cancel_order so stock is restored.
    """
    if new_status not in ORDER_STATUSES:
        raise InvalidStatus('Invalid status')

    order = _load_order(session, order_id)
    current = order.status
    check_transition(current, new_status)
    if current == new_status:
        return order
    if new_status == 'cancelled':
        return cancel_order(session, order_id)

    try:
        result = session.execute(
            update(Order)
            .where(Order.id == order_id, Order.status == current)
            .values(status=new_status)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            session.rollback()
            raise InvalidTransition('Order status changed concurrently; reload and retry')
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        raise

    session.expire_all()
    logger.info('Order %s moved from %s to %s', order_id, current, new_status)
    return _load_order(session, order_id)
