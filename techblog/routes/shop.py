"""Shop routes: products, keys, orders, coupons, memberships and payment channels."""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Path, Query

from techblog.db import get_session
from techblog.routes.deps import ok, optional_user, require_admin, require_user
from techblog.schemas import ChannelUpdateRequest, KeysRequest, OrderCreateRequest, OrderUpdateRequest
from techblog.services.auth import CurrentUser
from techblog.services.coupons import create_coupon, delete_coupon, list_coupons, quote_coupon, update_coupon
from techblog.services.payment_channels import list_channels, list_public_channels, update_channel
from techblog.services.shop import (
    add_keys,
    cancel_order,
    create_order,
    create_product,
    delete_key,
    delete_product,
    get_active_membership,
    list_keys,
    list_orders,
    list_products,
    update_order_status,
    update_product,
)

router = APIRouter(prefix="/shop", tags=["shop"])


# Products

@router.get("/products")
def products_index(
    product_type: Optional[str] = Query(None, alias="type"),
    status: Optional[str] = Query(None, description="'all' includes inactive products (admin only)"),
    user: Optional[CurrentUser] = Depends(optional_user),
) -> Dict[str, Any]:
    include_inactive = status == "all" and user is not None and user.is_admin
    with get_session() as db:
        return ok(list_products(db, product_type=product_type, include_inactive=include_inactive))


@router.post("/products", status_code=201)
def products_create(data: Dict[str, Any] = Body(...), user: CurrentUser = Depends(require_admin)) -> Dict[str, Any]:
    with get_session() as db:
        return ok(create_product(db, data), "Product created")


@router.put("/products")
def products_update(data: Dict[str, Any] = Body(...), user: CurrentUser = Depends(require_admin)) -> Dict[str, Any]:
    with get_session() as db:
        return ok(update_product(db, data), "Product updated")


@router.delete("/products")
def products_delete(
    product_id: Optional[int] = Query(None, alias="id"),
    user: CurrentUser = Depends(require_admin),
) -> Dict[str, Any]:
    with get_session() as db:
        delete_product(db, product_id)
    return ok(message="Product deleted")


# Product keys

@router.get("/keys")
def keys_index(
    product_id: Optional[int] = Query(None, alias="productId"),
    status: Optional[str] = Query(None),
    user: CurrentUser = Depends(require_admin),
) -> Dict[str, Any]:
    with get_session() as db:
        return ok(list_keys(db, product_id=product_id, status=status))


@router.post("/keys", status_code=201)
def keys_create(body: KeysRequest, user: CurrentUser = Depends(require_admin)) -> Dict[str, Any]:
    with get_session() as db:
        result = add_keys(db, body.product_id, body.keys, body.expires_in_days)
        return ok(result, f"Added {result['count']} keys")


@router.delete("/keys")
def keys_delete(key_id: Optional[int] = Query(None, alias="id"), user: CurrentUser = Depends(require_admin)) -> Dict[str, Any]:
    with get_session() as db:
        delete_key(db, key_id)
    return ok(message="Key deleted")


# Orders

@router.get("/orders")
def orders_index(
    status: Optional[str] = Query(None),
    admin: bool = Query(False, description="All orders, for admins"),
    user: CurrentUser = Depends(require_user),
) -> Dict[str, Any]:
    with get_session() as db:
        return ok(list_orders(db, user.id, is_admin=user.is_admin, all_orders=admin, status=status))


@router.post("/orders", status_code=201)
def orders_create(body: OrderCreateRequest, user: CurrentUser = Depends(require_user)) -> Dict[str, Any]:
    with get_session() as db:
        order = create_order(db, user.id, body.product_id, payment_method=body.payment_method,
                             coupon_code=body.coupon_code)
        return ok(order, "Order created")


@router.put("/orders")
def orders_update(body: OrderUpdateRequest, user: CurrentUser = Depends(require_admin)) -> Dict[str, Any]:
    with get_session() as db:
        order = update_order_status(db, body.id or body.order_id, body.status, transaction_id=body.transaction_id)
        return ok(order, "Order updated")


@router.post("/orders/{order_id}/cancel")
def orders_cancel(order_id: int = Path(..., ge=1), user: CurrentUser = Depends(require_user)) -> Dict[str, Any]:
    with get_session() as db:
        return ok(cancel_order(db, order_id, user.id), "Order cancelled")


# Coupons

@router.get("/coupons")
def coupons_validate(
    code: Optional[str] = Query(None),
    amount: float = Query(0, ge=0),
) -> Dict[str, Any]:
    with get_session() as db:
        return ok(quote_coupon(db, code, amount).to_dict())


@router.get("/coupons/all")
def coupons_index(user: CurrentUser = Depends(require_admin)) -> Dict[str, Any]:
    with get_session() as db:
        return ok(list_coupons(db))


@router.post("/coupons", status_code=201)
def coupons_create(data: Dict[str, Any] = Body(...), user: CurrentUser = Depends(require_admin)) -> Dict[str, Any]:
    with get_session() as db:
        return ok(create_coupon(db, data), "Coupon created")


@router.put("/coupons")
def coupons_update(data: Dict[str, Any] = Body(...), user: CurrentUser = Depends(require_admin)) -> Dict[str, Any]:
    with get_session() as db:
        return ok(update_coupon(db, data), "Coupon updated")


@router.delete("/coupons")
def coupons_delete(coupon_id: Optional[int] = Query(None, alias="id"), user: CurrentUser = Depends(require_admin)) -> Dict[str, Any]:
    with get_session() as db:
        delete_coupon(db, coupon_id)
    return ok(message="Coupon deleted")


# Membership

@router.get("/membership")
def membership(user: CurrentUser = Depends(require_user)) -> Dict[str, Any]:
    with get_session() as db:
        return {"success": True, "data": get_active_membership(db, user.id)}


# Payment channels

@router.get("/payment-channels")
def channels_index(user: CurrentUser = Depends(require_admin)) -> Dict[str, Any]:
    with get_session() as db:
        return ok(list_channels(db))


@router.put("/payment-channels")
def channels_update(body: ChannelUpdateRequest, user: CurrentUser = Depends(require_admin)) -> Dict[str, Any]:
    with get_session() as db:
        return ok(update_channel(db, body.code, enabled=body.enabled, config=body.config), "Payment channel updated")


@router.get("/payment-channels/public")
def channels_public() -> Dict[str, Any]:
    with get_session() as db:
        return ok(list_public_channels(db))
