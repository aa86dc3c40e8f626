# techblog/services/shop.py
"""Shop catalogue, serial keys, orders and memberships."""

import logging
import secrets
import string
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session, selectinload

from techblog.errors import ConflictError, NotFoundError, PermissionDenied, ServiceError
from techblog.models import Order, Product, ProductKey, UserMembership
from techblog.services.coupons import quote_coupon, redeem_coupon, release_coupon
from techblog.services.fulfillment import PAID_STATUSES, mark_order_paid

logger = logging.getLogger(__name__)

PRODUCT_TYPES = ("serial_key", "membership", "service")
ORDER_STATUSES = ("pending", "paid", "completed", "cancelled", "refunded")
MAX_PENDING_ORDERS = 3
_ORDER_NO_ALPHABET = string.ascii_uppercase + string.digits


def generate_order_no(now: Optional[datetime] = None) -> str:
    """ORD + YYYYMMDD + 8 random upper-case alphanumerics."""
    now = now or datetime.utcnow()
    suffix = "".join(secrets.choice(_ORDER_NO_ALPHABET) for _ in range(8))
    return f"ORD{now:%Y%m%d}{suffix}"


# Products

def _available_counts(db: Session, product_ids: List[int]) -> Dict[int, int]:
    if not product_ids:
        return {}
    return dict(
        db.query(ProductKey.product_id, func.count(ProductKey.id))
        .filter(ProductKey.product_id.in_(product_ids), ProductKey.status == "available")
        .group_by(ProductKey.product_id)
        .all()
    )


def serialize_product(product: Product, available: Optional[int] = None) -> Dict[str, Any]:
    if product.stock == -1:
        available_stock = -1
    else:
        available_stock = available if available is not None else 0
    return {
        "id": product.id,
        "name": product.name,
        "description": product.description,
        "price": product.price,
        "type": product.type,
        "duration": product.duration,
        "features": product.features or [],
        "image": product.image,
        "stock": product.stock,
        "availableStock": available_stock,
        "sortOrder": product.sort_order,
        "status": product.status,
        "createdAt": product.created_at.isoformat() if product.created_at else None,
    }


def list_products(db: Session, product_type: Optional[str] = None, include_inactive: bool = False) -> List[Dict[str, Any]]:
    q = db.query(Product)
    if not include_inactive:
        q = q.filter(Product.status == "active")
    if product_type:
        q = q.filter(Product.type == product_type)
    products = q.order_by(Product.sort_order.asc(), Product.created_at.desc()).all()
    counts = _available_counts(db, [p.id for p in products])
    return [serialize_product(p, counts.get(p.id, 0)) for p in products]


def _product_status(value: Any) -> str:
    if isinstance(value, bool):
        return "active" if value else "inactive"
    return value if value in ("active", "inactive") else "active"


def _apply_product_fields(product: Product, data: Dict[str, Any]) -> None:
    product.name = data["name"]
    product.description = data.get("description") or ""
    product.price = round(float(data["price"]), 2)
    product.type = data["type"]
    product.duration = int(data["duration"]) if data.get("duration") else None
    product.features = list(data["features"]) if data.get("features") else None
    product.image = data.get("image")
    product.stock = int(data["stock"]) if data.get("stock") not in (None, "") else -1
    product.sort_order = int(data.get("sortOrder") or 0)


def _validate_product(data: Dict[str, Any]) -> None:
    if not data.get("name") or data.get("price") in (None, "") or not data.get("type"):
        raise ServiceError("name, price and type are required")
    if data["type"] not in PRODUCT_TYPES:
        raise ServiceError(f"type must be one of {', '.join(PRODUCT_TYPES)}")
    try:
        price = float(data["price"])
    except (TypeError, ValueError):
        raise ServiceError("price must be a number")
    if price < 0:
        raise ServiceError("price cannot be negative")
    if data["type"] == "membership" and not data.get("duration"):
        raise ServiceError("Membership products need a duration in days")


def create_product(db: Session, data: Dict[str, Any]) -> Dict[str, Any]:
    _validate_product(data)
    product = Product(status="active")
    _apply_product_fields(product, data)
    db.add(product)
    db.flush()
    logger.info(f"Product {product.id} created")
    return serialize_product(product, 0)


def update_product(db: Session, data: Dict[str, Any]) -> Dict[str, Any]:
    if not data.get("id"):
        raise ServiceError("Product id is required")
    product = db.get(Product, data["id"])
    if product is None:
        raise NotFoundError("Product not found")
    _validate_product(data)
    _apply_product_fields(product, data)
    if data.get("status") is not None:
        product.status = _product_status(data["status"])
    db.flush()
    return serialize_product(product, _available_counts(db, [product.id]).get(product.id, 0))


def delete_product(db: Session, product_id: Optional[int]) -> None:
    if not product_id:
        raise ServiceError("Product id is required")
    product = db.get(Product, product_id)
    if product is None:
        raise NotFoundError("Product not found")
    if db.query(Order.id).filter(Order.product_id == product_id).first():
        raise ConflictError("Product has orders and cannot be deleted; deactivate it instead")
    db.query(ProductKey).filter(ProductKey.product_id == product_id).delete(synchronize_session=False)
    db.delete(product)
    db.flush()
    logger.info(f"Product {product_id} deleted")


# Product keys

def serialize_key(key: ProductKey) -> Dict[str, Any]:
    return {
        "id": key.id,
        "productId": key.product_id,
        "productName": key.product.name if key.product else None,
        "key": key.key_value,
        "status": key.status,
        "orderId": key.order_id,
        "userId": key.user_id,
        "soldAt": key.sold_at.isoformat() if key.sold_at else None,
        "expiresAt": key.expires_at.isoformat() if key.expires_at else None,
        "createdAt": key.created_at.isoformat() if key.created_at else None,
    }


def list_keys(db: Session, product_id: Optional[int] = None, status: Optional[str] = None) -> List[Dict[str, Any]]:
    q = db.query(ProductKey).options(selectinload(ProductKey.product))
    if product_id:
        q = q.filter(ProductKey.product_id == product_id)
    if status:
        q = q.filter(ProductKey.status == status)
    return [serialize_key(k) for k in q.order_by(ProductKey.created_at.desc(), ProductKey.id.desc()).all()]


def add_keys(db: Session, product_id: Optional[int], keys: Any, expires_in_days: Any = None) -> Dict[str, Any]:
    """
    Bulk-create serial keys for a product.

    Args:
        db: Database session
        product_id: Target product
        keys: List of key strings; blanks and in-batch duplicates are dropped
        expires_in_days: Optional validity period

    Returns:
        Dict with the number of keys created
    """
    if not product_id or not isinstance(keys, list) or not keys:
        raise ServiceError("productId and a non-empty keys list are required")
    if db.get(Product, product_id) is None:
        raise NotFoundError("Product not found")

    cleaned = list(dict.fromkeys(str(k).strip() for k in keys if str(k).strip()))
    if not cleaned:
        raise ServiceError("No valid keys given")

    existing = [r[0] for r in db.query(ProductKey.key_value).filter(ProductKey.key_value.in_(cleaned)).all()]
    if existing:
        raise ConflictError(f"Keys already exist: {', '.join(existing)}")

    expires_at = None
    try:
        days = int(expires_in_days) if expires_in_days not in (None, "") else 0
    except (TypeError, ValueError):
        raise ServiceError("expiresInDays must be a number")
    if days > 0:
        expires_at = datetime.utcnow() + timedelta(days=days)

    db.add_all([ProductKey(product_id=product_id, key_value=k, status="available", expires_at=expires_at)
                for k in cleaned])
    db.flush()
    logger.info(f"Added {len(cleaned)} keys to product {product_id}")
    return {"count": len(cleaned)}


def delete_key(db: Session, key_id: Optional[int]) -> None:
    if not key_id:
        raise ServiceError("Key id is required")
    key = db.get(ProductKey, key_id)
    if key is None:
        raise NotFoundError("Key not found")
    if key.status in ("sold", "used"):
        raise ConflictError("Sold or used keys cannot be deleted")
    db.delete(key)
    db.flush()


# Orders

def serialize_order(order: Order) -> Dict[str, Any]:
    product = order.product
    user = order.user
    keys = order.keys
    return {
        "id": order.id,
        "orderNo": order.order_no,
        "userId": order.user_id,
        "productId": order.product_id,
        "amount": order.amount,
        "originalAmount": order.original_amount,
        "discountAmount": order.discount_amount,
        "couponId": order.coupon_id,
        "status": order.status,
        "paymentMethod": order.payment_method,
        "paymentTime": order.payment_time.isoformat() if order.payment_time else None,
        "transactionId": order.transaction_id,
        "productKey": order.product_key,
        "remark": order.remark,
        "createdAt": order.created_at.isoformat() if order.created_at else None,
        "product": {"id": product.id, "name": product.name, "type": product.type, "image": product.image}
        if product else None,
        "user": {"id": user.id, "name": user.name, "email": user.email} if user else None,
        "keys": [
            {"key": k.key_value, "status": k.status, "expiresAt": k.expires_at.isoformat() if k.expires_at else None}
            for k in keys
        ],
    }


def list_orders(db: Session, user_id: int, is_admin: bool = False, all_orders: bool = False,
                status: Optional[str] = None) -> List[Dict[str, Any]]:
    q = db.query(Order).options(selectinload(Order.product), selectinload(Order.user), selectinload(Order.keys))
    if not (is_admin and all_orders):
        q = q.filter(Order.user_id == user_id)
    if status:
        q = q.filter(Order.status == status)
    return [serialize_order(o) for o in q.order_by(Order.created_at.desc(), Order.id.desc()).all()]


def get_order(db: Session, order_id: int) -> Order:
    order = db.get(Order, order_id)
    if order is None:
        raise NotFoundError("Order not found")
    return order


def get_order_by_no(db: Session, order_no: str) -> Order:
    order = db.query(Order).filter(Order.order_no == order_no).first()
    if order is None:
        raise NotFoundError("Order not found")
    return order


def create_order(db: Session, user_id: int, product_id: Optional[int], payment_method: Optional[str] = None,
                 coupon_code: Optional[str] = None) -> Dict[str, Any]:
    """
    Create a pending order for one product.

    Args:
        db: Database session
        user_id: Buyer
        product_id: Product to buy
        payment_method: Channel the buyer intends to use
        coupon_code: Optional coupon applied to the product price

    Returns:
        Serialized order
    """
    if not product_id:
        raise ServiceError("Please choose a product")
    product = db.get(Product, product_id)
    if product is None or product.status != "active":
        raise ServiceError("Product does not exist or is no longer on sale")

    if product.stock != -1:
        available = _available_counts(db, [product.id]).get(product.id, 0)
        if available == 0:
            raise ServiceError("Product is sold out")

    pending = db.query(func.count(Order.id)).filter(Order.user_id == user_id, Order.status == "pending").scalar()
    if pending >= MAX_PENDING_ORDERS:
        raise ServiceError("Too many unpaid orders; pay or cancel an existing order first")

    order = Order(
        order_no=generate_order_no(),
        user_id=user_id,
        product=product,
        amount=product.price,
        original_amount=product.price,
        discount_amount=0,
        status="pending",
        payment_method=payment_method or None,
    )

    if coupon_code:
        quote = quote_coupon(db, coupon_code, product.price)
        redeem_coupon(db, quote.coupon.id)
        order.coupon_id = quote.coupon.id
        order.discount_amount = quote.discount_amount
        order.amount = quote.final_amount

    db.add(order)
    db.flush()
    logger.info(f"Order {order.order_no} created for user {user_id}, amount {order.amount:.2f}")
    return serialize_order(order)


def cancel_order(db: Session, order_id: int, user_id: int, is_admin: bool = False) -> Dict[str, Any]:
    order = db.query(Order).filter(Order.id == order_id).with_for_update().first()
    if order is None:
        raise NotFoundError("Order not found")
    if order.user_id != user_id and not is_admin:
        raise PermissionDenied("You cannot cancel this order")
    if order.status != "pending":
        raise ConflictError("Only pending orders can be cancelled")

    order.status = "cancelled"
    if order.coupon_id:
        release_coupon(db, order.coupon_id)
    db.flush()
    logger.info(f"Order {order.order_no} cancelled")
    return serialize_order(order)


def update_order_status(db: Session, order_id: Optional[int], status: Optional[str],
                        transaction_id: Optional[str] = None) -> Dict[str, Any]:
    """Admin status change; paid/completed runs fulfilment."""
    if not order_id or not status:
        raise ServiceError("Order id and status are required")
    if status not in ORDER_STATUSES:
        raise ServiceError(f"status must be one of {', '.join(ORDER_STATUSES)}")
    order = get_order(db, order_id)

    if status in PAID_STATUSES:
        if order.status == "paid" and status == "completed":
            order.status = "completed"
        else:
            mark_order_paid(db, order_id=order.id, payment_method=order.payment_method or "manual",
                            transaction_id=transaction_id, status=status, idempotent=False)
    else:
        if status == "cancelled" and order.status == "pending" and order.coupon_id:
            release_coupon(db, order.coupon_id)
        order.status = status
    db.flush()
    db.refresh(order)
    return serialize_order(order)


# Memberships

def get_active_membership(db: Session, user_id: int) -> Optional[Dict[str, Any]]:
    membership = db.query(UserMembership).filter(UserMembership.user_id == user_id).first()
    if membership is None or membership.status != "active" or membership.end_date < datetime.utcnow():
        return None
    return {
        "id": membership.id,
        "type": membership.type,
        "startDate": membership.start_date.isoformat(),
        "endDate": membership.end_date.isoformat(),
        "status": "active",
    }
