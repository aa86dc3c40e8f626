"""The "test" channel: simulated payments that complete without a gateway."""

import logging
import time
from typing import Any, Optional

from techblog.errors import PaymentError
from techblog.services.payments.base import Notification, PaymentGateway, PaymentStart, PaymentStatus

logger = logging.getLogger(__name__)

MAX_DELAY_MS = 5000


class SandboxGateway(PaymentGateway):
    code = "test"

    @property
    def delay_ms(self) -> int:
        try:
            delay = int(self.config.get("delay") or 1000)
        except (TypeError, ValueError):
            delay = 1000
        return max(0, min(delay, MAX_DELAY_MS))

    @property
    def auto_success(self) -> bool:
        return str(self.config.get("autoSuccess", "true")).lower() != "false"

    def simulate(self) -> None:
        """Wait the configured delay, then fail unless autoSuccess is on."""
        time.sleep(self.delay_ms / 1000)
        if not self.auto_success:
            raise PaymentError("Test payment failed (configured not to succeed automatically)")

    def create_payment(self, order_no: str, amount: float, title: str,
                       pay_type: Optional[str] = None, client_ip: Optional[str] = None) -> PaymentStart:
        self.simulate()
        return PaymentStart(data={"orderNo": order_no}, payment_method=self.code,
                            remark="Simulated test payment")

    def query_payment(self, order_no: str) -> PaymentStatus:
        return PaymentStatus(paid=False, trade_state="NOTPAY", description="Test payments complete synchronously")

    @classmethod
    def parse_notification(cls, payload: Any) -> Notification:
        raise PaymentError("The test channel does not send notifications")

    def verify_notification(self, notification: Notification) -> bool:
        return False
