"""Shared pieces of the payment gateway integrations."""

import hashlib
import logging
import secrets
import string
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

import requests
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from techblog.config import HTTP_RETRY_ATTEMPTS, HTTP_TIMEOUT_SECONDS
from techblog.errors import PaymentError

logger = logging.getLogger(__name__)

_NONCE_ALPHABET = string.ascii_letters + string.digits


@dataclass
class PaymentStart:
    """What the buyer needs to complete a payment."""
    data: Dict[str, Any]
    payment_method: str
    remark: Optional[str] = None


@dataclass
class PaymentStatus:
    """Result of asking a gateway about an order."""
    paid: bool
    trade_state: str
    description: Optional[str] = None
    transaction_id: Optional[str] = None
    pay_type: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Notification:
    """A parsed asynchronous payment notification."""
    order_no: Optional[str]
    paid: bool
    amount: Optional[str] = None
    transaction_id: Optional[str] = None
    pay_type: Optional[str] = None
    status: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


def nonce_str(length: int = 32) -> str:
    return "".join(secrets.choice(_NONCE_ALPHABET) for _ in range(length))


def sorted_query(params: Dict[str, Any], exclude: Tuple[str, ...] = ()) -> str:
    """k=v pairs sorted by key, joined with &, skipping empty values and excluded keys."""
    items = [
        (k, v) for k, v in params.items()
        if k not in exclude and v is not None and str(v) != ""
    ]
    return "&".join(f"{k}={v}" for k, v in sorted(items))


def md5_hex(text: str) -> str:
    return hashlib.md5(text.encode("utf-8")).hexdigest()


def format_money(amount: float) -> str:
    return f"{amount:.2f}"


def to_fen(amount: float) -> int:
    return int(round(amount * 100))


_http_retry = retry(
    retry=retry_if_exception_type((requests.ConnectionError, requests.Timeout)),
    stop=stop_after_attempt(HTTP_RETRY_ATTEMPTS),
    wait=wait_exponential(multiplier=1, min=1, max=5),
    reraise=True,
)


@_http_retry
def http_post(url: str, data: Any = None, headers: Optional[Dict[str, str]] = None) -> requests.Response:
    response = requests.post(url, data=data, headers=headers, timeout=HTTP_TIMEOUT_SECONDS)
    response.raise_for_status()
    return response


@_http_retry
def http_get(url: str, params: Optional[Dict[str, Any]] = None) -> requests.Response:
    response = requests.get(url, params=params, timeout=HTTP_TIMEOUT_SECONDS)
    response.raise_for_status()
    return response


class PaymentGateway:
    """
    Base class of a payment channel integration.

    Subclasses implement create_payment, query_payment, parse_notification
    and verify_notification, and describe their notification acknowledgement.
    """

    code = ""
    pay_types: Tuple[str, ...] = ()
    default_pay_type: Optional[str] = None
    ack_media_type = "text/plain"
    # whether a verified but unsuccessful notification is acknowledged as handled
    ack_unpaid = False

    def __init__(self, config: Dict[str, Any]):
        self.config = config

    @classmethod
    def env_config(cls) -> Optional[Dict[str, Any]]:
        """Configuration from environment variables, used when the channel has no stored row."""
        return None

    def resolve_pay_type(self, pay_type: Optional[str]) -> Optional[str]:
        if not self.pay_types:
            return None
        pay_type = pay_type or self.default_pay_type
        if pay_type not in self.pay_types:
            raise PaymentError("Unsupported payment method")
        return pay_type

    def payment_method(self, pay_type: Optional[str] = None) -> str:
        return f"{self.code}_{pay_type}" if pay_type else self.code

    def create_payment(self, order_no: str, amount: float, title: str,
                       pay_type: Optional[str] = None, client_ip: Optional[str] = None) -> PaymentStart:
        raise NotImplementedError

    def query_payment(self, order_no: str) -> PaymentStatus:
        raise NotImplementedError

    @classmethod
    def parse_notification(cls, payload: Any) -> Notification:
        raise NotImplementedError

    def can_verify_notifications(self) -> bool:
        """Whether the config holds what verify_notification needs."""
        return True

    def verify_notification(self, notification: Notification) -> bool:
        raise NotImplementedError

    def amount_matches(self, notification: Notification, order_amount: float) -> bool:
        return notification.amount == format_money(order_amount)

    def notification_remark(self, notification: Notification) -> str:
        return f"{self.code} transaction: {notification.transaction_id}"

    @classmethod
    def ack(cls, ok: bool, message: str = "") -> str:
        return "success" if ok else f"fail: {message}" if message else "fail"
