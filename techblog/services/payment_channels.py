"""
Payment channel registry.

Channel definitions (fields, supported pay types) live in code; the
payment_channels table only stores the enabled flag and the config values.
"""

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from techblog.errors import ServiceError
from techblog.models import PaymentChannel

logger = logging.getLogger(__name__)

# config keys safe to expose to buyers
NON_SENSITIVE_KEYS = ("enabledPaymentTypes", "delay", "autoSuccess")


@dataclass
class ConfigField:
    key: str
    label: str
    type: str = "text"  # text | password | url
    required: bool = False
    help_text: str = ""


@dataclass
class PaymentType:
    code: str
    name: str


@dataclass
class ChannelDefinition:
    code: str
    name: str
    description: str
    sort_order: int
    config_fields: List[ConfigField] = field(default_factory=list)
    supported_payment_types: List[PaymentType] = field(default_factory=list)
    help_url: str = ""

    @property
    def required_keys(self) -> List[str]:
        return [f.key for f in self.config_fields if f.required]

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        return {
            "code": data["code"],
            "name": data["name"],
            "description": data["description"],
            "sortOrder": data["sort_order"],
            "configFields": [
                {"key": f["key"], "label": f["label"], "type": f["type"],
                 "required": f["required"], "helpText": f["help_text"]}
                for f in data["config_fields"]
            ],
            "supportedPaymentTypes": data["supported_payment_types"] or None,
            "helpUrl": data["help_url"],
        }


CHANNEL_DEFINITIONS: List[ChannelDefinition] = [
    ChannelDefinition(
        code="wechat",
        name="WeChat Pay",
        description="WeChat Pay native QR code payments (merchant account required)",
        sort_order=1,
        config_fields=[
            ConfigField("appId", "Official account AppID", required=True),
            ConfigField("mchId", "Merchant ID", required=True),
            ConfigField("apiKey", "API key (v2)", "password", required=True),
            ConfigField("apiV3Key", "API v3 key", "password"),
            ConfigField("serialNo", "Certificate serial number"),
            ConfigField("notifyUrl", "Notify URL", "url", required=True,
                        help_text="Public HTTPS address for payment notifications"),
        ],
        help_url="https://pay.weixin.qq.com/wiki/doc/api/native.php",
    ),
    ChannelDefinition(
        code="alipay",
        name="Alipay",
        description="Alipay face-to-face QR code payments (merchant account required)",
        sort_order=2,
        config_fields=[
            ConfigField("appId", "App ID", required=True),
            ConfigField("privateKey", "App private key (RSA2)", "password", required=True),
            ConfigField("alipayPublicKey", "Alipay public key", "password", required=True),
            ConfigField("notifyUrl", "Notify URL", "url", required=True),
        ],
        help_url="https://opendocs.alipay.com/apis/api_1/alipay.trade.precreate",
    ),
    ChannelDefinition(
        code="xunhupay",
        name="XunhuPay",
        description="Aggregated WeChat and Alipay payments for individual developers",
        sort_order=3,
        config_fields=[
            ConfigField("appid", "AppID", required=True),
            ConfigField("appSecret", "AppSecret", "password", required=True),
            ConfigField("notifyUrl", "Notify URL", "url"),
        ],
        supported_payment_types=[PaymentType("wechat", "WeChat Pay"), PaymentType("alipay", "Alipay")],
        help_url="https://www.xunhupay.com/doc",
    ),
    ChannelDefinition(
        code="epay",
        name="Epay",
        description="Epay-compatible aggregated payment gateway",
        sort_order=4,
        config_fields=[
            ConfigField("gateway", "Gateway URL", "url", required=True),
            ConfigField("pid", "Merchant ID", required=True),
            ConfigField("key", "Merchant key", "password", required=True),
            ConfigField("notifyUrl", "Notify URL", "url"),
            ConfigField("returnUrl", "Return URL", "url"),
        ],
        supported_payment_types=[
            PaymentType("alipay", "Alipay"), PaymentType("wxpay", "WeChat Pay"), PaymentType("qqpay", "QQ Wallet"),
        ],
    ),
    ChannelDefinition(
        code="test",
        name="Test payment",
        description="Simulated channel for development; completes orders without real money",
        sort_order=5,
        config_fields=[
            ConfigField("delay", "Simulated delay (ms)", help_text="Defaults to 1000"),
            ConfigField("autoSuccess", "Succeed automatically", help_text="true/false, defaults to true"),
        ],
    ),
]

_DEFINITIONS_BY_CODE = {d.code: d for d in CHANNEL_DEFINITIONS}


def get_definition(code: str) -> Optional[ChannelDefinition]:
    return _DEFINITIONS_BY_CODE.get(code)


def validate_channel_config(code: str, config: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Check the required fields of a channel are all filled in."""
    definition = get_definition(code)
    if definition is None:
        return {"valid": False, "missingFields": []}
    config = config or {}
    missing = [k for k in definition.required_keys if not str(config.get(k) or "").strip()]
    return {"valid": not missing, "missingFields": missing}


def _load_rows(db: Session) -> Dict[str, PaymentChannel]:
    return {row.code: row for row in db.query(PaymentChannel).all()}


def get_channel_config(db: Session, code: str, require_enabled: bool = True) -> Optional[Dict[str, Any]]:
    """Stored config of a channel, or None when missing (or disabled, if required)."""
    row = db.query(PaymentChannel).filter(PaymentChannel.code == code).first()
    if row is None or (require_enabled and not row.enabled):
        return None
    return dict(row.config or {})


def _merge(definition: ChannelDefinition, row: Optional[PaymentChannel]) -> Dict[str, Any]:
    data = definition.to_dict()
    config = dict(row.config or {}) if row else {}
    data.update({
        "enabled": bool(row.enabled) if row else False,
        "config": config,
        "configValid": validate_channel_config(definition.code, config)["valid"],
        "updatedAt": row.updated_at.isoformat() if row and row.updated_at else None,
    })
    return data


def list_channels(db: Session) -> List[Dict[str, Any]]:
    rows = _load_rows(db)
    return [_merge(d, rows.get(d.code)) for d in sorted(CHANNEL_DEFINITIONS, key=lambda d: d.sort_order)]


def list_public_channels(db: Session) -> List[Dict[str, Any]]:
    rows = _load_rows(db)
    result = []
    for definition in sorted(CHANNEL_DEFINITIONS, key=lambda d: d.sort_order):
        row = rows.get(definition.code)
        if row is None or not row.enabled:
            continue
        config = row.config or {}
        result.append({
            "code": definition.code,
            "name": definition.name,
            "description": definition.description,
            "supportedPaymentTypes": definition.to_dict()["supportedPaymentTypes"],
            "config": {k: config[k] for k in NON_SENSITIVE_KEYS if k in config},
        })
    return result


def update_channel(db: Session, code: Optional[str], enabled: Optional[bool] = None,
                   config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Update a channel's enabled flag and/or shallow-merge its config.

    Args:
        db: Database session
        code: Channel code
        enabled: New enabled flag, unchanged when None
        config: Keys to merge into the stored config, unchanged when None

    Returns:
        Merged channel dict
    """
    if not code:
        raise ServiceError("Channel code is required")
    definition = get_definition(code)
    if definition is None:
        raise ServiceError(f"Unknown payment channel: {code}")
    if config is not None and not isinstance(config, dict):
        raise ServiceError("config must be an object")

    row = db.query(PaymentChannel).filter(PaymentChannel.code == code).first()
    if row is None:
        row = PaymentChannel(code=code, enabled=False, config={})
        db.add(row)

    if enabled is not None:
        row.enabled = bool(enabled)
    if config is not None:
        merged = dict(row.config or {})
        merged.update(config)
        row.config = merged
    db.flush()

    logger.info(f"Payment channel {code} updated (enabled={row.enabled})")
    return _merge(definition, row)
