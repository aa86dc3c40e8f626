"""Coupon validation, redemption accounting and admin CRUD."""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from techblog.errors import ConflictError, NotFoundError, ServiceError
from techblog.models import Coupon

logger = logging.getLogger(__name__)

COUPON_TYPES = ("percentage", "fixed")


@dataclass
class CouponQuote:
    """Discount a coupon grants on a given amount."""
    coupon: Coupon
    amount: float
    discount_amount: float
    final_amount: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.coupon.id,
            "code": self.coupon.code,
            "name": self.coupon.name,
            "type": self.coupon.type,
            "value": self.coupon.value,
            "discountAmount": self.discount_amount,
            "finalAmount": self.final_amount,
            "minAmount": self.coupon.min_amount,
            "maxDiscount": self.coupon.max_discount,
        }


def compute_discount(coupon_type: str, value: float, amount: float, max_discount: Optional[float] = None) -> float:
    """
    Discount for an amount.

    Percentage coupons take value% of the amount, capped at max_discount.
    Fixed coupons take value, capped at the amount itself.
    """
    if coupon_type == "percentage":
        discount = amount * value / 100
        if max_discount and discount > max_discount:
            discount = max_discount
    else:
        discount = min(value, amount)
    return round(max(0.0, discount), 2)


def quote_coupon(db: Session, code: Optional[str], amount: float, now: Optional[datetime] = None) -> CouponQuote:
    """
    Validate a coupon code against an order amount.

    Checks run in order: code given, coupon exists, enabled, inside its time
    window, not used up, amount meets the minimum.

    Args:
        db: Database session
        code: Coupon code
        amount: Order amount before discount
        now: Reference time, defaults to utcnow

    Returns:
        CouponQuote
    """
    if not code:
        raise ServiceError("Coupon code is required")
    coupon = db.query(Coupon).filter(Coupon.code == code).first()
    if coupon is None:
        raise NotFoundError("Coupon not found")
    if not coupon.status:
        raise ServiceError("Coupon is disabled")

    now = now or datetime.utcnow()
    if now < coupon.start_time or now > coupon.end_time:
        raise ServiceError("Coupon has expired or is not yet valid")
    if coupon.total_count != -1 and coupon.used_count >= coupon.total_count:
        raise ServiceError("Coupon has been used up")
    if amount < coupon.min_amount:
        raise ServiceError(f"Order amount must be at least {coupon.min_amount:.2f} to use this coupon")

    discount = compute_discount(coupon.type, coupon.value, amount, coupon.max_discount)
    return CouponQuote(coupon=coupon, amount=amount, discount_amount=discount,
                       final_amount=round(amount - discount, 2))


def redeem_coupon(db: Session, coupon_id: int) -> None:
    """Count one use of a coupon; the guarded UPDATE refuses to exceed total_count."""
    coupon = db.get(Coupon, coupon_id)
    if coupon is None:
        raise NotFoundError("Coupon not found")
    q = db.query(Coupon).filter(Coupon.id == coupon_id)
    if coupon.total_count != -1:
        q = q.filter(Coupon.used_count < Coupon.total_count)
    if q.update({Coupon.used_count: Coupon.used_count + 1}, synchronize_session=False) == 0:
        raise ServiceError("Coupon has been used up")
    db.expire(coupon)


def release_coupon(db: Session, coupon_id: int) -> None:
    db.query(Coupon).filter(Coupon.id == coupon_id, Coupon.used_count > 0).update(
        {Coupon.used_count: Coupon.used_count - 1}, synchronize_session=False
    )


def serialize_coupon(coupon: Coupon) -> Dict[str, Any]:
    return {
        "id": coupon.id,
        "code": coupon.code,
        "name": coupon.name,
        "description": coupon.description,
        "type": coupon.type,
        "value": coupon.value,
        "minAmount": coupon.min_amount,
        "maxDiscount": coupon.max_discount,
        "totalCount": coupon.total_count,
        "usedCount": coupon.used_count,
        "startTime": coupon.start_time.isoformat(),
        "endTime": coupon.end_time.isoformat(),
        "status": bool(coupon.status),
        "createdAt": coupon.created_at.isoformat() if coupon.created_at else None,
    }


def _parse_time(value: Any, field_name: str) -> datetime:
    if isinstance(value, datetime):
        return value
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        raise ServiceError(f"Invalid {field_name}")
    # stored naive in UTC
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def list_coupons(db: Session) -> List[Dict[str, Any]]:
    return [serialize_coupon(c) for c in db.query(Coupon).order_by(Coupon.created_at.desc()).all()]


def create_coupon(db: Session, data: Dict[str, Any]) -> Dict[str, Any]:
    required = ("code", "name", "type", "value", "startTime", "endTime")
    if any(data.get(k) in (None, "") for k in required):
        raise ServiceError("code, name, type, value, startTime and endTime are required")
    if data["type"] not in COUPON_TYPES:
        raise ServiceError("type must be percentage or fixed")
    if db.query(Coupon.id).filter(Coupon.code == data["code"]).first():
        raise ConflictError("Coupon code already exists")

    coupon = Coupon(
        code=str(data["code"]).strip(),
        name=data["name"],
        description=data.get("description"),
        type=data["type"],
        value=float(data["value"]),
        min_amount=float(data.get("minAmount") or 0),
        max_discount=float(data["maxDiscount"]) if data.get("maxDiscount") else None,
        total_count=int(data.get("totalCount") or -1),
        used_count=0,
        start_time=_parse_time(data["startTime"], "startTime"),
        end_time=_parse_time(data["endTime"], "endTime"),
        status=True,
    )
    db.add(coupon)
    db.flush()
    logger.info(f"Coupon {coupon.code} created")
    return serialize_coupon(coupon)


def update_coupon(db: Session, data: Dict[str, Any]) -> Dict[str, Any]:
    coupon_id = data.get("id")
    if not coupon_id:
        raise ServiceError("Coupon id is required")
    coupon = db.get(Coupon, coupon_id)
    if coupon is None:
        raise NotFoundError("Coupon not found")

    if data.get("status") is not None:
        coupon.status = bool(data["status"])
    if data.get("name"):
        coupon.name = data["name"]
    if data.get("description") is not None:
        coupon.description = data["description"]
    if data.get("minAmount") is not None:
        coupon.min_amount = float(data["minAmount"])
    if "maxDiscount" in data:
        coupon.max_discount = float(data["maxDiscount"]) if data["maxDiscount"] else None
    if data.get("totalCount") is not None:
        coupon.total_count = int(data["totalCount"])
    if data.get("startTime"):
        coupon.start_time = _parse_time(data["startTime"], "startTime")
    if data.get("endTime"):
        coupon.end_time = _parse_time(data["endTime"], "endTime")
    db.flush()
    return serialize_coupon(coupon)


def delete_coupon(db: Session, coupon_id: Optional[int]) -> None:
    if not coupon_id:
        raise ServiceError("Coupon id is required")
    coupon = db.get(Coupon, coupon_id)
    if coupon is None:
        raise NotFoundError("Coupon not found")
    db.delete(coupon)
    db.flush()
