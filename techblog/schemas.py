"""
Request bodies.

Fields are optional so the service layer owns validation messages; JSON keys
are camelCase, with snake_case accepted too.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RegisterRequest(CamelModel):
    email: Optional[str] = None
    password: Optional[str] = None
    name: Optional[str] = None


class LoginRequest(CamelModel):
    email: Optional[str] = None
    password: Optional[str] = None


class ProfileRequest(CamelModel):
    name: Optional[str] = None
    bio: Optional[str] = None


class PasswordRequest(CamelModel):
    old_password: Optional[str] = None
    new_password: Optional[str] = None


class PostCreateRequest(CamelModel):
    title: Optional[str] = None
    content: Optional[str] = None
    excerpt: Optional[str] = None
    category: Optional[str] = None
    tags: Optional[List[str]] = None
    cover_image: Optional[str] = None
    published: bool = True


class PostActionRequest(CamelModel):
    action: Optional[str] = None


class CommentCreateRequest(CamelModel):
    post_id: Optional[int] = None
    content: Optional[str] = None
    parent_id: Optional[int] = None


class CommentUpdateRequest(CamelModel):
    id: Optional[int] = None
    action: Optional[str] = None
    content: Optional[str] = None


class GuestbookRequest(CamelModel):
    message: Optional[str] = None


class TrendingRequest(CamelModel):
    action: Optional[str] = None
    topic_id: Optional[int] = None
    direction: Optional[str] = None
    option_id: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    tags: Optional[List[str]] = None
    vote_type: Optional[str] = None
    options: Optional[Any] = None
    content: Optional[str] = None


class KeysRequest(CamelModel):
    product_id: Optional[int] = None
    keys: Optional[Any] = None
    expires_in_days: Optional[int] = None


class OrderCreateRequest(CamelModel):
    product_id: Optional[int] = None
    payment_method: Optional[str] = None
    coupon_code: Optional[str] = None


class OrderUpdateRequest(CamelModel):
    id: Optional[int] = None
    order_id: Optional[int] = None
    status: Optional[str] = None
    transaction_id: Optional[str] = None


class PaymentRequest(CamelModel):
    order_id: Optional[int] = None
    pay_type: Optional[str] = None
    trade_type: Optional[str] = None


class ChannelUpdateRequest(CamelModel):
    code: Optional[str] = None
    enabled: Optional[bool] = None
    config: Optional[Dict[str, Any]] = None


class EpayProbeRequest(CamelModel):
    pid: Optional[str] = None
    key: Optional[str] = None
    gateway: Optional[str] = None


class UserUpdateRequest(CamelModel):
    is_admin: Optional[bool] = None
    is_banned: Optional[bool] = None
    banned_reason: Optional[str] = None


class SetupRequest(CamelModel):
    email: Optional[str] = None
    password: Optional[str] = None
    name: Optional[str] = None
