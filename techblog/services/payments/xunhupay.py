"""XunhuPay aggregated WeChat/Alipay payments."""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from techblog import config as settings
from techblog.errors import PaymentError
from techblog.services.payments.base import (
    Notification,
    PaymentGateway,
    PaymentStart,
    PaymentStatus,
    format_money,
    http_post,
    md5_hex,
    nonce_str,
    sorted_query,
)

logger = logging.getLogger(__name__)

API_BASE = "https://api.xunhupay.com/payment"
PAY_TYPE_NAMES = {"wechat": "WeChat Pay", "alipay": "Alipay"}


def xunhupay_hash(params: Dict[str, Any], app_secret: str) -> str:
    """MD5 of the sorted non-empty params (hash excluded) followed directly by the secret."""
    return md5_hex(sorted_query(params, exclude=("hash",)) + app_secret)


def verify_xunhupay_hash(params: Dict[str, Any], app_secret: str) -> bool:
    received = params.get("hash")
    return bool(received) and received.lower() == xunhupay_hash(params, app_secret)


def _now() -> str:
    return datetime.now().strftime("%Y-%m-%d %H:%M:%S")


class XunhuPayGateway(PaymentGateway):
    code = "xunhupay"
    pay_types = ("wechat", "alipay")
    default_pay_type = "wechat"

    @classmethod
    def env_config(cls) -> Optional[Dict[str, Any]]:
        if not (settings.XUNHUPAY_APPID and settings.XUNHUPAY_APP_SECRET):
            return None
        return {
            "appid": settings.XUNHUPAY_APPID,
            "appSecret": settings.XUNHUPAY_APP_SECRET,
            "notifyUrl": settings.XUNHUPAY_NOTIFY_URL,
        }

    @property
    def notify_url(self) -> str:
        return self.config.get("notifyUrl") or f"{settings.SITE_URL}/api/shop/xunhupay/notify"

    def _call(self, endpoint: str, params: Dict[str, Any]) -> Dict[str, Any]:
        params["hash"] = xunhupay_hash(params, self.config["appSecret"])
        response = http_post(f"{API_BASE}/{endpoint}", data=params)
        try:
            return response.json()
        except ValueError:
            raise PaymentError("XunhuPay returned an invalid response", 500)

    def create_payment(self, order_no: str, amount: float, title: str,
                       pay_type: Optional[str] = None, client_ip: Optional[str] = None) -> PaymentStart:
        pay_type = self.resolve_pay_type(pay_type)
        endpoint = "alipay.html" if pay_type == "alipay" else "do.html"
        result = self._call(endpoint, {
            "version": "1.1",
            "appid": self.config["appid"],
            "trade_order_id": order_no,
            "total_fee": format_money(amount),
            "title": title,
            "time": _now(),
            "notify_url": self.notify_url,
            "nonce_str": nonce_str(16),
            "type": "NATIVE",
        })
        if result.get("err_code") != 0:
            raise PaymentError(result.get("err_msg") or "Failed to create payment order", 500)

        return PaymentStart(
            data={
                "payUrl": result.get("url"),
                "payQrcode": result.get("url_qrcode"),
                "orderId": result.get("order_id"),
                "orderNo": order_no,
            },
            payment_method=self.payment_method(pay_type),
            remark=f"XunhuPay order ID: {result.get('order_id') or ''}",
        )

    def query_payment(self, order_no: str) -> PaymentStatus:
        result = self._call("query.html", {
            "appid": self.config["appid"],
            "trade_order_id": order_no,
            "time": _now(),
            "nonce_str": nonce_str(16),
        })
        if result.get("err_code") != 0:
            raise PaymentError(result.get("err_msg") or "Failed to query order", 500)

        paid = result.get("status") == "OD"
        return PaymentStatus(
            paid=paid,
            trade_state="SUCCESS" if paid else "NOTPAY",
            description="Payment successful" if paid else "Waiting for payment",
            transaction_id=result.get("out_trade_order"),
        )

    @classmethod
    def parse_notification(cls, payload: Any) -> Notification:
        data = {k: str(v) for k, v in dict(payload or {}).items()}
        if not (data.get("trade_order_id") and data.get("status") and data.get("hash")):
            raise PaymentError("Incomplete parameters")
        return Notification(
            order_no=data["trade_order_id"],
            paid=data["status"] == "OD",
            amount=data.get("total_fee"),
            transaction_id=data.get("out_trade_order"),
            pay_type="alipay" if data.get("type") == "alipay" else "wechat",
            status=data["status"],
            raw=data,
        )

    def verify_notification(self, notification: Notification) -> bool:
        return verify_xunhupay_hash(notification.raw, self.config["appSecret"])

    def notification_remark(self, notification: Notification) -> str:
        name = PAY_TYPE_NAMES.get(notification.pay_type, notification.pay_type)
        return f"XunhuPay transaction: {notification.transaction_id}, paid with {name}"
