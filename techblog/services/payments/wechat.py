"""WeChat Pay (API v2) native QR code payments."""

import logging
import xml.etree.ElementTree as ET
from typing import Any, Dict, Optional

from techblog import config as settings
from techblog.errors import PaymentError
from techblog.services.payments.base import (
    Notification,
    PaymentGateway,
    PaymentStart,
    PaymentStatus,
    http_post,
    md5_hex,
    nonce_str,
    sorted_query,
    to_fen,
)

logger = logging.getLogger(__name__)

UNIFIED_ORDER_URL = "https://api.mch.weixin.qq.com/pay/unifiedorder"
ORDER_QUERY_URL = "https://api.mch.weixin.qq.com/pay/orderquery"


def wechat_sign(params: Dict[str, Any], api_key: str) -> str:
    """MD5 over the sorted non-empty params (sign excluded) + &key=, upper-case hex."""
    return md5_hex(f"{sorted_query(params, exclude=('sign',))}&key={api_key}").upper()


def verify_wechat_sign(params: Dict[str, Any], api_key: str) -> bool:
    sign = params.get("sign")
    return bool(sign) and sign == wechat_sign(params, api_key)


def to_xml(params: Dict[str, Any]) -> str:
    body = "".join(
        f"<{k}><![CDATA[{v}]]></{k}>" for k, v in params.items() if v is not None and str(v) != ""
    )
    return f"<xml>{body}</xml>"


def from_xml(text: Any) -> Dict[str, str]:
    if isinstance(text, bytes):
        text = text.decode("utf-8")
    # notify bodies are untrusted; no DTDs, so no entity expansion
    if "<!DOCTYPE" in text.upper() or "<!ENTITY" in text.upper():
        raise PaymentError("Malformed WeChat Pay XML: DTD not allowed")
    try:
        root = ET.fromstring(text)
    except ET.ParseError as e:
        raise PaymentError(f"Malformed WeChat Pay XML: {e}")
    return {child.tag: (child.text or "") for child in root}


class WechatPayGateway(PaymentGateway):
    code = "wechat"
    ack_media_type = "application/xml"
    ack_unpaid = True

    @classmethod
    def env_config(cls) -> Optional[Dict[str, Any]]:
        if not all((settings.WECHAT_PAY_APP_ID, settings.WECHAT_PAY_MCH_ID,
                    settings.WECHAT_PAY_API_KEY, settings.WECHAT_PAY_NOTIFY_URL)):
            return None
        return {
            "appId": settings.WECHAT_PAY_APP_ID,
            "mchId": settings.WECHAT_PAY_MCH_ID,
            "apiKey": settings.WECHAT_PAY_API_KEY,
            "notifyUrl": settings.WECHAT_PAY_NOTIFY_URL,
        }

    def _call(self, url: str, params: Dict[str, Any]) -> Dict[str, str]:
        params["sign"] = wechat_sign(params, self.config["apiKey"])
        response = http_post(url, data=to_xml(params).encode("utf-8"),
                             headers={"Content-Type": "application/xml"})
        return from_xml(response.content)

    def create_payment(self, order_no: str, amount: float, title: str,
                       pay_type: Optional[str] = None, client_ip: Optional[str] = None) -> PaymentStart:
        result = self._call(UNIFIED_ORDER_URL, {
            "appid": self.config["appId"],
            "mch_id": self.config["mchId"],
            "nonce_str": nonce_str(),
            "body": title,
            "out_trade_no": order_no,
            "total_fee": to_fen(amount),
            "spbill_create_ip": client_ip or "127.0.0.1",
            "notify_url": self.config["notifyUrl"],
            "trade_type": "NATIVE",
            "product_id": order_no,
        })
        if result.get("return_code") != "SUCCESS":
            raise PaymentError(result.get("return_msg") or "WeChat Pay request failed", 500)
        if result.get("result_code") != "SUCCESS":
            raise PaymentError(result.get("err_code_des") or "Failed to create WeChat Pay order", 500)

        prepay_id = result.get("prepay_id")
        return PaymentStart(
            data={
                "prepayId": prepay_id,
                "codeUrl": result.get("code_url"),
                "mwebUrl": result.get("mweb_url"),
                "orderNo": order_no,
            },
            payment_method=self.code,
            remark=f"prepay_id: {prepay_id}",
        )

    def query_payment(self, order_no: str) -> PaymentStatus:
        result = self._call(ORDER_QUERY_URL, {
            "appid": self.config["appId"],
            "mch_id": self.config["mchId"],
            "out_trade_no": order_no,
            "nonce_str": nonce_str(),
        })
        if result.get("return_code") != "SUCCESS":
            raise PaymentError(result.get("return_msg") or "WeChat Pay query failed", 500)
        if result.get("result_code") != "SUCCESS":
            raise PaymentError(result.get("err_code_des") or "WeChat Pay query failed", 500)

        trade_state = result.get("trade_state") or "NOTPAY"
        return PaymentStatus(
            paid=trade_state == "SUCCESS",
            trade_state=trade_state,
            description=result.get("trade_state_desc"),
            transaction_id=result.get("transaction_id"),
        )

    @classmethod
    def parse_notification(cls, payload: Any) -> Notification:
        data = from_xml(payload)
        if data.get("return_code") != "SUCCESS":
            raise PaymentError(data.get("return_msg") or "Notification reported failure")
        if not data.get("out_trade_no"):
            raise PaymentError("Missing order number")
        return Notification(
            order_no=data["out_trade_no"],
            paid=data.get("result_code") == "SUCCESS",
            amount=data.get("total_fee"),
            transaction_id=data.get("transaction_id"),
            status=data.get("result_code"),
            raw=data,
        )

    def verify_notification(self, notification: Notification) -> bool:
        return verify_wechat_sign(notification.raw, self.config["apiKey"])

    def amount_matches(self, notification: Notification, order_amount: float) -> bool:
        try:
            return int(notification.amount) == to_fen(order_amount)
        except (TypeError, ValueError):
            return False

    def notification_remark(self, notification: Notification) -> str:
        return f"WeChat Pay transaction: {notification.transaction_id}"

    @classmethod
    def ack(cls, ok: bool, message: str = "") -> str:
        if ok:
            return to_xml({"return_code": "SUCCESS", "return_msg": "OK"})
        return to_xml({"return_code": "FAIL", "return_msg": message or "FAIL"})
