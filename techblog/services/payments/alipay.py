"""Alipay face-to-face (precreate) QR code payments, signed with RSA2."""

import base64
import json
import logging
import textwrap
from datetime import datetime
from typing import Any, Dict, Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding

from techblog import config as settings
from techblog.errors import PaymentError
from techblog.services.payments.base import (
    Notification,
    PaymentGateway,
    PaymentStart,
    PaymentStatus,
    format_money,
    http_post,
    sorted_query,
)

logger = logging.getLogger(__name__)

PAID_TRADE_STATUSES = ("TRADE_SUCCESS", "TRADE_FINISHED")


def _pem(key: str, kind: str) -> bytes:
    """Accept either a full PEM block or the bare base64 body Alipay's console hands out."""
    key = key.strip()
    if key.startswith("-----BEGIN"):
        return key.encode("ascii")
    body = "\n".join(textwrap.wrap("".join(key.split()), 64))
    return f"-----BEGIN {kind}-----\n{body}\n-----END {kind}-----\n".encode("ascii")


def load_private_key(private_key: str):
    """PKCS#8 first, then PKCS#1 for bare keys."""
    last_error = None
    for kind in ("PRIVATE KEY", "RSA PRIVATE KEY"):
        try:
            return serialization.load_pem_private_key(_pem(private_key, kind), password=None)
        except ValueError as e:
            last_error = e
    raise PaymentError(f"Invalid Alipay private key: {last_error}", 500)


def rsa2_sign(content: str, private_key: str) -> str:
    key = load_private_key(private_key)
    signature = key.sign(content.encode("utf-8"), padding.PKCS1v15(), hashes.SHA256())
    return base64.b64encode(signature).decode("ascii")


def rsa2_verify(content: str, signature: str, public_key: str) -> bool:
    try:
        key = serialization.load_pem_public_key(_pem(public_key, "PUBLIC KEY"))
        key.verify(base64.b64decode(signature), content.encode("utf-8"), padding.PKCS1v15(), hashes.SHA256())
    except (InvalidSignature, ValueError) as e:
        logger.warning(f"Alipay signature rejected: {e}")
        return False
    return True


class AlipayGateway(PaymentGateway):
    code = "alipay"

    @classmethod
    def env_config(cls) -> Optional[Dict[str, Any]]:
        if not all((settings.ALIPAY_APP_ID, settings.ALIPAY_PRIVATE_KEY,
                    settings.ALIPAY_PUBLIC_KEY, settings.ALIPAY_NOTIFY_URL)):
            return None
        return {
            "appId": settings.ALIPAY_APP_ID,
            "privateKey": settings.ALIPAY_PRIVATE_KEY,
            "alipayPublicKey": settings.ALIPAY_PUBLIC_KEY,
            "notifyUrl": settings.ALIPAY_NOTIFY_URL,
        }

    @property
    def gateway_url(self) -> str:
        return self.config.get("gateway") or settings.ALIPAY_GATEWAY

    def _call(self, method: str, biz_content: Dict[str, Any], notify: bool = False) -> Dict[str, Any]:
        params = {
            "app_id": self.config["appId"],
            "method": method,
            "format": "JSON",
            "charset": "utf-8",
            "sign_type": "RSA2",
            "timestamp": datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
            "version": "1.0",
            "biz_content": json.dumps(biz_content, separators=(",", ":"), ensure_ascii=False),
        }
        if notify:
            params["notify_url"] = self.config["notifyUrl"]
        params["sign"] = rsa2_sign(sorted_query(params), self.config["privateKey"])

        response = http_post(self.gateway_url, data=params)
        try:
            body = response.json()
        except ValueError:
            raise PaymentError("Alipay returned an invalid response", 500)
        return body.get(method.replace(".", "_") + "_response") or {}

    def create_payment(self, order_no: str, amount: float, title: str,
                       pay_type: Optional[str] = None, client_ip: Optional[str] = None) -> PaymentStart:
        result = self._call("alipay.trade.precreate", {
            "out_trade_no": order_no,
            "total_amount": format_money(amount),
            "subject": title,
        }, notify=True)
        if result.get("code") != "10000":
            raise PaymentError(result.get("sub_msg") or result.get("msg") or "Failed to create Alipay order", 500)

        return PaymentStart(
            data={"qrCode": result.get("qr_code"), "orderNo": order_no},
            payment_method=self.code,
            remark="Alipay precreate",
        )

    def query_payment(self, order_no: str) -> PaymentStatus:
        result = self._call("alipay.trade.query", {"out_trade_no": order_no})
        code = result.get("code")
        if code == "40004":
            # trade not created until the buyer scans the code
            return PaymentStatus(paid=False, trade_state="NOTPAY", description="Waiting for payment")
        if code != "10000":
            raise PaymentError(result.get("sub_msg") or result.get("msg") or "Alipay query failed", 500)

        trade_status = result.get("trade_status") or ""
        paid = trade_status in PAID_TRADE_STATUSES
        return PaymentStatus(
            paid=paid,
            trade_state="SUCCESS" if paid else "NOTPAY",
            description=trade_status,
            transaction_id=result.get("trade_no"),
        )

    @classmethod
    def parse_notification(cls, payload: Any) -> Notification:
        data = {k: str(v) for k, v in dict(payload or {}).items()}
        if not (data.get("out_trade_no") and data.get("trade_status") and data.get("sign")):
            raise PaymentError("Incomplete parameters")
        return Notification(
            order_no=data["out_trade_no"],
            paid=data["trade_status"] in PAID_TRADE_STATUSES,
            amount=data.get("total_amount"),
            transaction_id=data.get("trade_no"),
            status=data["trade_status"],
            raw=data,
        )

    def verify_notification(self, notification: Notification) -> bool:
        content = sorted_query(notification.raw, exclude=("sign", "sign_type"))
        return rsa2_verify(content, notification.raw["sign"], self.config["alipayPublicKey"])

    def amount_matches(self, notification: Notification, order_amount: float) -> bool:
        try:
            return format_money(float(notification.amount)) == format_money(order_amount)
        except (TypeError, ValueError):
            return False

    def notification_remark(self, notification: Notification) -> str:
        return f"Alipay transaction: {notification.transaction_id}"

    @classmethod
    def ack(cls, ok: bool, message: str = "") -> str:
        return "success" if ok else "fail"
