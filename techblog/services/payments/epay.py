"""
Epay-compatible gateways.

With PAYMENT_TEST_MODE enabled no gateway is contacted: payments are tracked
in a process-local map and succeed on their own after
PAYMENT_TEST_AUTO_SUCCESS_MS. The map is lost on restart.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import requests

from techblog import config as settings
from techblog.errors import PaymentError, ServiceError
from techblog.services.payments.base import (
    Notification,
    PaymentGateway,
    PaymentStart,
    PaymentStatus,
    format_money,
    http_get,
    http_post,
    md5_hex,
    sorted_query,
)

logger = logging.getLogger(__name__)

PAY_TYPE_NAMES = {"alipay": "Alipay", "wxpay": "WeChat Pay", "qqpay": "QQ Wallet"}


def epay_sign(params: Dict[str, Any], key: str) -> str:
    """MD5 of the sorted non-empty params (sign and sign_type excluded) followed by the key."""
    return md5_hex(sorted_query(params, exclude=("sign", "sign_type")) + key)


def verify_epay_sign(params: Dict[str, Any], key: str) -> bool:
    received = params.get("sign")
    return bool(received) and received.lower() == epay_sign(params, key)


def normalize_gateway(gateway: str) -> str:
    gateway = gateway.strip().rstrip("/")
    if not gateway.startswith(("http://", "https://")):
        gateway = "https://" + gateway
    return gateway


@dataclass
class SimulatedPayment:
    pay_type: str
    created_at: float
    paid: bool = False


class SimulatedPaymentRegistry:
    """In-memory payment states used while PAYMENT_TEST_MODE is on."""

    def __init__(self, auto_success_ms: Optional[int] = None):
        self.auto_success_ms = settings.PAYMENT_TEST_AUTO_SUCCESS_MS if auto_success_ms is None else auto_success_ms
        self._payments: Dict[str, SimulatedPayment] = {}
        self._lock = threading.Lock()

    def start(self, order_no: str, pay_type: str) -> SimulatedPayment:
        with self._lock:
            payment = SimulatedPayment(pay_type=pay_type, created_at=time.monotonic())
            self._payments[order_no] = payment
            return payment

    def poll(self, order_no: str, pay_type: str = "alipay") -> SimulatedPayment:
        """Current state; unknown orders start now, known ones flip to paid once the delay passed."""
        with self._lock:
            payment = self._payments.get(order_no)
            if payment is None:
                payment = SimulatedPayment(pay_type=pay_type, created_at=time.monotonic())
                self._payments[order_no] = payment
            elif not payment.paid and self.auto_success_ms > 0 and self.elapsed_ms(payment) >= self.auto_success_ms:
                payment.paid = True
            return payment

    def elapsed_ms(self, payment: SimulatedPayment) -> int:
        return int((time.monotonic() - payment.created_at) * 1000)

    def remaining_ms(self, payment: SimulatedPayment) -> Optional[int]:
        if self.auto_success_ms <= 0:
            return None
        return max(0, self.auto_success_ms - self.elapsed_ms(payment))

    def clear(self) -> None:
        with self._lock:
            self._payments.clear()


simulated_payments = SimulatedPaymentRegistry()


class EpayGateway(PaymentGateway):
    code = "epay"
    pay_types = ("alipay", "wxpay", "qqpay")
    default_pay_type = "alipay"

    def __init__(self, config: Dict[str, Any], test_mode: Optional[bool] = None):
        super().__init__(config)
        self.test_mode = settings.PAYMENT_TEST_MODE if test_mode is None else test_mode

    @classmethod
    def env_config(cls) -> Optional[Dict[str, Any]]:
        if not (settings.EPAY_PID and settings.EPAY_KEY and settings.EPAY_GATEWAY):
            return None
        return {
            "gateway": settings.EPAY_GATEWAY,
            "pid": settings.EPAY_PID,
            "key": settings.EPAY_KEY,
            "notifyUrl": settings.EPAY_NOTIFY_URL,
        }

    @property
    def gateway(self) -> str:
        return normalize_gateway(self.config["gateway"])

    def _signed(self, params: Dict[str, Any]) -> Dict[str, Any]:
        params = {k: v for k, v in params.items() if v is not None and str(v) != ""}
        params["sign"] = epay_sign(params, self.config["key"])
        params["sign_type"] = "MD5"
        return params

    def create_payment(self, order_no: str, amount: float, title: str,
                       pay_type: Optional[str] = None, client_ip: Optional[str] = None) -> PaymentStart:
        pay_type = self.resolve_pay_type(pay_type)

        if self.test_mode:
            simulated_payments.start(order_no, pay_type)
            logger.info(f"Epay test-mode payment started for {order_no}")
            return PaymentStart(
                data={
                    "payUrl": f"{settings.SITE_URL}/orders?test_pay=success&orderNo={order_no}",
                    "payQrcode": f"test_qrcode_{pay_type}_{int(time.time() * 1000)}",
                    "orderNo": order_no,
                    "testMode": True,
                    "autoSuccessMs": simulated_payments.auto_success_ms,
                },
                payment_method=self.payment_method(pay_type),
                remark="Test mode payment",
            )

        params = self._signed({
            "pid": self.config["pid"],
            "type": pay_type,
            "out_trade_no": order_no,
            "notify_url": self.config.get("notifyUrl") or f"{settings.SITE_URL}/api/shop/epay/notify",
            "return_url": self.config.get("returnUrl") or f"{settings.SITE_URL}/orders",
            "name": title,
            "money": format_money(amount),
            "device": "pc",
            "clientip": client_ip or "127.0.0.1",
        })
        response = http_post(f"{self.gateway}/mapi.php", data=params)
        try:
            result = response.json()
        except ValueError:
            raise PaymentError("Epay returned an invalid response", 500)
        if result.get("code") != 1:
            raise PaymentError(result.get("msg") or "Failed to create payment order", 500)

        trade_no = result.get("trade_no") or result.get("tradeNo")
        return PaymentStart(
            data={
                "payUrl": f"{self.gateway}/submit.php?{urlencode(params)}",
                "payQrcode": result.get("qrcode") or result.get("payurl") or result.get("payUrl"),
                "tradeNo": trade_no,
                "orderNo": order_no,
            },
            payment_method=self.payment_method(pay_type),
            remark=f"Epay order ID: {trade_no or ''}",
        )

    def query_payment(self, order_no: str) -> PaymentStatus:
        if self.test_mode:
            payment = simulated_payments.poll(order_no)
            return PaymentStatus(
                paid=payment.paid,
                trade_state="SUCCESS" if payment.paid else "NOTPAY",
                description="Paid (test mode)" if payment.paid else "Waiting for payment (test mode)",
                transaction_id=f"TEST{order_no}",
                pay_type=payment.pay_type,
                extra={"testMode": True, "remainingMs": simulated_payments.remaining_ms(payment)},
            )

        params = self._signed({"act": "order", "pid": self.config["pid"], "out_trade_no": order_no})
        response = http_get(f"{self.gateway}/api.php", params=params)
        try:
            result = response.json()
        except ValueError:
            raise PaymentError("Epay returned an invalid response", 500)
        if result.get("code") != 1:
            raise PaymentError(result.get("msg") or "Failed to query order", 500)

        paid = result.get("trade_status") == "TRADE_SUCCESS" or str(result.get("status")) == "1"
        return PaymentStatus(
            paid=paid,
            trade_state="SUCCESS" if paid else "NOTPAY",
            description="Payment successful" if paid else "Waiting for payment",
            transaction_id=result.get("trade_no"),
            pay_type=result.get("type"),
        )

    def payment_method(self, pay_type: Optional[str] = None) -> str:
        return super().payment_method(pay_type if pay_type in self.pay_types else None)

    @classmethod
    def parse_notification(cls, payload: Any) -> Notification:
        data = {k: str(v) for k, v in dict(payload or {}).items()}
        if not all(data.get(k) for k in ("trade_no", "out_trade_no", "trade_status", "sign")):
            raise PaymentError("Incomplete parameters")
        return Notification(
            order_no=data["out_trade_no"],
            paid=data["trade_status"] == "TRADE_SUCCESS",
            amount=data.get("money"),
            transaction_id=data["trade_no"],
            pay_type=data.get("type"),
            status=data["trade_status"],
            raw=data,
        )

    def can_verify_notifications(self) -> bool:
        # test mode starts and polls without a merchant key
        return bool(self.config.get("key"))

    def verify_notification(self, notification: Notification) -> bool:
        return verify_epay_sign(notification.raw, self.config["key"])

    def notification_remark(self, notification: Notification) -> str:
        name = PAY_TYPE_NAMES.get(notification.pay_type, notification.pay_type)
        return f"Epay transaction: {notification.transaction_id}, paid with {name}"


def probe_epay_gateway(pid: Optional[str], key: Optional[str], gateway: Optional[str]) -> Dict[str, Any]:
    """
    Probe an epay gateway with a signed merchant query.

    Args:
        pid: Merchant id
        key: Merchant key
        gateway: Gateway base URL, scheme optional

    Returns:
        {"merchantName", "balance"} on success; raises ServiceError otherwise
    """
    if not (pid and key and gateway):
        raise ServiceError("pid, key and gateway are required")
    base = normalize_gateway(gateway)
    params = {"act": "query", "pid": pid}
    params["sign"] = epay_sign(params, key)
    params["sign_type"] = "MD5"

    logger.info(f"Testing epay gateway {base}")
    try:
        response = requests.get(f"{base}/api.php", params=params, timeout=settings.HTTP_TIMEOUT_SECONDS,
                                headers={"Accept": "application/json"})
    except requests.Timeout:
        raise ServiceError("Connection timed out; check the gateway address and network")
    except requests.ConnectionError:
        raise ServiceError("Cannot reach the payment gateway; check the gateway address")

    try:
        result = response.json()
    except ValueError:
        text = response.text
        if "<" in text or response.status_code != 200:
            raise ServiceError("Gateway address is invalid or unreachable")
        if "success" in text or "ok" in text:
            return {"merchantName": "Unknown", "balance": "Unknown"}
        raise ServiceError("Unrecognised gateway response; check the gateway address")

    code = result.get("code", result.get("ret"))
    if code == 1 or result.get("status") == "success":
        return {
            "merchantName": result.get("name") or result.get("merchant_name") or "Unknown",
            "balance": result.get("money") or result.get("balance") or "Unknown",
        }
    if code == -1:
        raise ServiceError("Merchant key verification failed")
    if code == -2:
        raise ServiceError("Merchant id does not exist")
    raise ServiceError(result.get("msg") or result.get("message") or "Connection test failed")
