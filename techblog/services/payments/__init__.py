"""
Payment dispatch.

Every channel is a PaymentGateway subclass registered in GATEWAYS. Starting,
polling and gateway notifications all end in fulfillment.mark_order_paid.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Type

from sqlalchemy.orm import Session

from techblog import config as settings
from techblog.errors import NotFoundError, PaymentError, PermissionDenied, ServiceError
from techblog.models import Order
from techblog.services.fulfillment import PAID_STATUSES, mark_order_paid
from techblog.services.payment_channels import get_channel_config
from techblog.services.payments.alipay import AlipayGateway
from techblog.services.payments.base import PaymentGateway
from techblog.services.payments.epay import EpayGateway
from techblog.services.payments.sandbox import SandboxGateway
from techblog.services.payments.wechat import WechatPayGateway
from techblog.services.payments.xunhupay import XunhuPayGateway

logger = logging.getLogger(__name__)

GATEWAYS: Dict[str, Type[PaymentGateway]] = {
    WechatPayGateway.code: WechatPayGateway,
    AlipayGateway.code: AlipayGateway,
    XunhuPayGateway.code: XunhuPayGateway,
    EpayGateway.code: EpayGateway,
    SandboxGateway.code: SandboxGateway,
}


@dataclass
class Acknowledgement:
    """Reply to a gateway notification, in the gateway's own format."""
    ok: bool
    body: str
    media_type: str


def get_gateway_class(channel: str) -> Type[PaymentGateway]:
    gateway_cls = GATEWAYS.get(channel)
    if gateway_cls is None:
        raise ServiceError(f"Unknown payment channel: {channel}")
    return gateway_cls


def build_gateway(db: Session, channel: str) -> Optional[PaymentGateway]:
    """
    Gateway for a channel, configured from its enabled row or the environment.

    The test channel has no environment fallback: it works only while enabled.
    Epay in PAYMENT_TEST_MODE needs no configuration at all.
    """
    gateway_cls = get_gateway_class(channel)
    config = get_channel_config(db, channel)
    if config is None and gateway_cls is not SandboxGateway:
        config = gateway_cls.env_config()
    if config is None and gateway_cls is EpayGateway and settings.PAYMENT_TEST_MODE:
        config = {}
    if config is None:
        return None
    return gateway_cls(config)


def _not_configured(channel: str) -> PaymentError:
    if channel == SandboxGateway.code:
        return PaymentError("Test payment channel is not enabled")
    return PaymentError(f"{channel} is not configured; set up the payment channel in the admin panel", 500)


def _payable_order(db: Session, order_id: Optional[int], user_id: int) -> Order:
    if not order_id:
        raise ServiceError("Order ID is required")
    order = db.get(Order, order_id)
    if order is None:
        raise NotFoundError("Order not found")
    if order.user_id != user_id:
        raise PermissionDenied("No permission to operate this order")
    if order.status != "pending":
        raise ServiceError("Order status does not allow payment")
    return order


def start_payment(db: Session, channel: str, order_id: Optional[int], user_id: int,
                  pay_type: Optional[str] = None, client_ip: Optional[str] = None) -> Dict[str, Any]:
    """
    Start paying a pending order through a channel.

    Args:
        db: Database session
        channel: Channel code (wechat, alipay, xunhupay, epay, test)
        order_id: Order to pay
        user_id: Current user, who must own the order
        pay_type: Channel-specific pay type (xunhupay and epay)
        client_ip: Buyer IP forwarded to gateways that want it

    Returns:
        Gateway data the buyer needs (QR code, pay URL, ...)
    """
    gateway = build_gateway(db, channel)
    # a disabled test channel is reported before any order lookup
    if gateway is None and channel == SandboxGateway.code:
        raise _not_configured(channel)
    order = _payable_order(db, order_id, user_id)
    if gateway is None:
        raise _not_configured(channel)

    title = order.product.name if order.product else "Product Purchase"
    started = gateway.create_payment(order.order_no, order.amount, title, pay_type=pay_type, client_ip=client_ip)

    if isinstance(gateway, SandboxGateway):
        result = mark_order_paid(db, order_id=order.id, payment_method=started.payment_method,
                                 remark=started.remark)
        return {**started.data, "status": result.status, "productKey": result.product_key}

    order.payment_method = started.payment_method
    if started.remark:
        order.remark = started.remark
    db.flush()
    logger.info(f"Payment started for order {order.order_no} via {started.payment_method}")
    return started.data


def check_payment(db: Session, channel: str, order_no: Optional[str], user_id: int,
                  is_admin: bool = False) -> Dict[str, Any]:
    """Poll a gateway for an order's state, fulfilling it when the gateway reports it paid."""
    get_gateway_class(channel)
    if not order_no:
        raise ServiceError("Order number is required")
    order = db.query(Order).filter(Order.order_no == order_no).first()
    if order is None:
        raise NotFoundError("Order not found")
    if order.user_id != user_id and not is_admin:
        raise PermissionDenied("No permission to view this order")

    if order.status in PAID_STATUSES:
        return {"tradeState": "SUCCESS", "orderStatus": order.status}

    gateway = build_gateway(db, channel)
    if gateway is None:
        raise _not_configured(channel)

    status = gateway.query_payment(order_no)
    order_status = order.status
    if status.paid and order.status == "pending":
        result = mark_order_paid(
            db,
            order_id=order.id,
            payment_method=order.payment_method or gateway.payment_method(status.pay_type),
            transaction_id=status.transaction_id,
            remark=f"{channel} transaction: {status.transaction_id}" if status.transaction_id else None,
        )
        order_status = result.status

    return {
        "tradeState": status.trade_state,
        "tradeStateDesc": status.description,
        "orderStatus": order_status,
        **status.extra,
    }


def handle_notification(db: Session, channel: str, payload: Any) -> Acknowledgement:
    """
    Process an asynchronous gateway notification.

    Already paid orders are acknowledged without re-checking; otherwise the
    signature, the reported status and the amount must all hold before the
    order is fulfilled.

    Args:
        db: Database session
        channel: Channel code the notification was sent to
        payload: Form fields (dict) or raw XML body (wechat)

    Returns:
        Acknowledgement to send back with HTTP 200
    """
    gateway_cls = get_gateway_class(channel)

    def reply(ok: bool, message: str = "") -> Acknowledgement:
        if not ok:
            logger.warning(f"[{channel} notify] rejected: {message}")
        return Acknowledgement(ok, gateway_cls.ack(ok, message), gateway_cls.ack_media_type)

    try:
        notification = gateway_cls.parse_notification(payload)
    except PaymentError as e:
        return reply(False, e.message)
    logger.info(f"[{channel} notify] received for order {notification.order_no}: {notification.raw}")

    order = db.query(Order).filter(Order.order_no == notification.order_no).first()
    if order is None:
        return reply(False, "Order not found")
    if order.status in PAID_STATUSES:
        logger.info(f"[{channel} notify] order {order.order_no} already processed")
        return reply(True)

    gateway = build_gateway(db, channel)
    if gateway is None or not gateway.can_verify_notifications():
        return reply(False, "Payment channel not configured")
    if not gateway.verify_notification(notification):
        return reply(False, "Signature verification failed")
    if not notification.paid:
        logger.info(f"[{channel} notify] payment not successful: {notification.status}")
        return reply(True) if gateway.ack_unpaid else reply(False, "Payment not successful")
    if not gateway.amount_matches(notification, order.amount):
        return reply(False, f"Amount mismatch: {notification.amount} vs {order.amount:.2f}")

    try:
        mark_order_paid(
            db,
            order_id=order.id,
            payment_method=gateway.payment_method(notification.pay_type),
            transaction_id=notification.transaction_id,
            remark=gateway.notification_remark(notification),
        )
    except ServiceError as e:
        return reply(False, e.message)

    logger.info(f"[{channel} notify] order {order.order_no} paid")
    return reply(True)
