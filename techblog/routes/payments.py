"""
Payment routes.

Each channel exposes POST (start paying an order) and GET (poll the order's
state), plus a notify endpoint for the gateway's asynchronous callback.
Notify endpoints always answer HTTP 200 in the gateway's own format.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Request, Response

from techblog.db import get_session
from techblog.routes.deps import ok, require_admin, require_user
from techblog.schemas import EpayProbeRequest, PaymentRequest
from techblog.services.auth import CurrentUser
from techblog.services.payments import Acknowledgement, check_payment, get_gateway_class, handle_notification, start_payment
from techblog.services.payments.epay import probe_epay_gateway

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/shop", tags=["payments"])

# URL segment -> channel code
PAY_ROUTES = {
    "wechat-pay": "wechat",
    "alipay": "alipay",
    "xunhupay": "xunhupay",
    "epay": "epay",
}


def _client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def _start(channel: str, body: PaymentRequest, request: Request, user: CurrentUser) -> Dict[str, Any]:
    with get_session() as db:
        data = start_payment(
            db,
            channel,
            body.order_id,
            user.id,
            pay_type=body.pay_type,
            client_ip=_client_ip(request),
        )
        return ok(data)


def _check(channel: str, order_no: Optional[str], user: CurrentUser) -> Dict[str, Any]:
    with get_session() as db:
        return ok(check_payment(db, channel, order_no, user.id, is_admin=user.is_admin))


def _register_channel(segment: str, channel: str) -> None:
    @router.post(f"/{segment}", name=f"{channel}_start")
    def start(body: PaymentRequest, request: Request, user: CurrentUser = Depends(require_user)) -> Dict[str, Any]:
        return _start(channel, body, request, user)

    @router.get(f"/{segment}", name=f"{channel}_check")
    def check(
        order_no: Optional[str] = Query(None, alias="orderNo"),
        user: CurrentUser = Depends(require_user),
    ) -> Dict[str, Any]:
        return _check(channel, order_no, user)


for _segment, _channel in PAY_ROUTES.items():
    _register_channel(_segment, _channel)


@router.post("/test-pay")
def test_pay(body: PaymentRequest, request: Request, user: CurrentUser = Depends(require_user)) -> Dict[str, Any]:
    """Simulated payment: sleeps for the configured delay then fulfils the order."""
    with get_session() as db:
        data = start_payment(db, "test", body.order_id, user.id, client_ip=_client_ip(request))
        return ok(data, "Test payment successful")


@router.post("/epay/test")
def epay_probe(body: EpayProbeRequest, user: CurrentUser = Depends(require_admin)) -> Dict[str, Any]:
    return ok(probe_epay_gateway(body.pid, body.key, body.gateway), "Connection successful")


# Notifications

def _notify(channel: str, payload: Any) -> Response:
    try:
        with get_session() as db:
            ack = handle_notification(db, channel, payload)
    except Exception:
        logger.exception(f"[{channel} notify] processing failed")
        gateway_cls = get_gateway_class(channel)
        ack = Acknowledgement(False, gateway_cls.ack(False, "Processing error"), gateway_cls.ack_media_type)
    return Response(content=ack.body, media_type=ack.media_type, status_code=200)


async def _form_payload(request: Request) -> Dict[str, str]:
    form = await request.form()
    return {k: str(v) for k, v in form.items()}


@router.post("/wechat-pay/notify")
async def wechat_notify(request: Request) -> Response:
    body = await request.body()
    return _notify("wechat", body.decode("utf-8", errors="replace"))


@router.post("/alipay/notify")
async def alipay_notify(request: Request) -> Response:
    return _notify("alipay", await _form_payload(request))


@router.post("/xunhupay/notify")
async def xunhupay_notify(request: Request) -> Response:
    return _notify("xunhupay", await _form_payload(request))


@router.get("/xunhupay/notify")
def xunhupay_notify_get(request: Request) -> Response:
    return _notify("xunhupay", dict(request.query_params))


@router.post("/epay/notify")
async def epay_notify(request: Request) -> Response:
    return _notify("epay", await _form_payload(request))


@router.get("/epay/notify")
def epay_notify_get(request: Request) -> Response:
    return _notify("epay", dict(request.query_params))
