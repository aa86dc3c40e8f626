"""
Order fulfilment: the single transaction every payment path ends in.

Marking an order paid allocates a serial key for finite-stock key products
and extends the buyer's membership for membership products.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from techblog.errors import ConflictError, NotFoundError
from techblog.models import Order, Product, ProductKey, UserMembership

logger = logging.getLogger(__name__)

PAID_STATUSES = ("paid", "completed")


@dataclass
class FulfillmentResult:
    """Outcome of marking an order paid."""
    order_id: int
    order_no: str
    status: str
    already_paid: bool = False
    product_key: Optional[str] = None
    membership_end: Optional[datetime] = None


def allocate_key(db: Session, order: Order, now: datetime) -> Optional[str]:
    """Hand the first available key of the order's product to the buyer."""
    key = (
        db.query(ProductKey)
        .filter(ProductKey.product_id == order.product_id, ProductKey.status == "available")
        .order_by(ProductKey.id)
        .with_for_update(skip_locked=True)
        .first()
    )
    if key is None:
        return None
    key.status = "sold"
    key.order_id = order.id
    key.user_id = order.user_id
    key.sold_at = now
    return key.key_value


def extend_membership(db: Session, user_id: int, duration_days: int, now: datetime) -> UserMembership:
    """
    Extend or create a membership by duration_days.

    The extension starts from the later of the current end date and now, so
    lapsed memberships do not get back-dated time.
    """
    membership = db.query(UserMembership).filter(UserMembership.user_id == user_id).with_for_update().first()
    membership_type = "yearly" if duration_days >= 365 else "monthly"

    if membership is None:
        membership = UserMembership(
            user_id=user_id,
            type=membership_type,
            start_date=now,
            end_date=now + timedelta(days=duration_days),
            status="active",
        )
        db.add(membership)
    else:
        base = membership.end_date if membership.end_date and membership.end_date > now else now
        if membership.status != "active" or membership.end_date < now:
            membership.start_date = now
        membership.end_date = base + timedelta(days=duration_days)
        membership.status = "active"
        if duration_days >= 365:
            membership.type = "yearly"
    return membership


def mark_order_paid(
    db: Session,
    order_id: Optional[int] = None,
    order_no: Optional[str] = None,
    payment_method: Optional[str] = None,
    transaction_id: Optional[str] = None,
    remark: Optional[str] = None,
    status: str = "paid",
    idempotent: bool = True,
) -> FulfillmentResult:
    """
    Mark an order paid and deliver what was bought, in the caller's transaction.

    Args:
        db: Database session
        order_id: Order primary key (or give order_no)
        order_no: Public order number
        payment_method: Channel that collected the payment
        transaction_id: Gateway transaction id
        remark: Free text stored on the order
        status: paid or completed
        idempotent: When True an already paid order is reported as success;
            when False it raises ConflictError

    Returns:
        FulfillmentResult
    """
    q = db.query(Order)
    if order_id is not None:
        q = q.filter(Order.id == order_id)
    elif order_no:
        q = q.filter(Order.order_no == order_no)
    else:
        raise NotFoundError("Order not found")
    order = q.with_for_update().first()
    if order is None:
        raise NotFoundError("Order not found")

    if order.status in PAID_STATUSES:
        if not idempotent:
            raise ConflictError("Order is already paid")
        logger.info(f"Order {order.order_no} already paid, nothing to do")
        return FulfillmentResult(order.id, order.order_no, order.status, already_paid=True,
                                 product_key=order.product_key)
    if order.status != "pending":
        raise ConflictError(f"Order is {order.status} and cannot be paid")

    now = datetime.utcnow()
    product = db.get(Product, order.product_id)

    order.status = status if status in PAID_STATUSES else "paid"
    order.payment_time = now
    if payment_method:
        order.payment_method = payment_method
    if transaction_id:
        order.transaction_id = transaction_id
    if remark:
        order.remark = remark

    result = FulfillmentResult(order.id, order.order_no, order.status)

    if product is not None and product.type == "serial_key" and product.stock != -1:
        key_value = allocate_key(db, order, now)
        if key_value is None:
            logger.error(f"Order {order.order_no} paid but product {product.id} has no available key")
            order.remark = "Paid, no key available: manual delivery required"
        else:
            order.product_key = key_value
            result.product_key = key_value

    if product is not None and product.type == "membership" and product.duration:
        membership = extend_membership(db, order.user_id, product.duration, now)
        result.membership_end = membership.end_date

    db.flush()
    logger.info(f"Order {order.order_no} marked {order.status} via {order.payment_method or 'manual'}")
    return result
