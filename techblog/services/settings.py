# techblog/services/settings.py
"""Site settings stored as key/value rows with code-level defaults."""

import logging
from typing import Dict, Optional

from sqlalchemy.orm import Session

from techblog.errors import ServiceError
from techblog.models import SystemSetting
from techblog.services.cache import redis_client

logger = logging.getLogger(__name__)

PUBLIC_CACHE_KEY = "settings:public"

DEFAULT_SETTINGS: Dict[str, Dict[str, str]] = {
    "site_title": {"value": "SysLog", "description": "Site title"},
    "site_description": {"value": "A modern technical blog", "description": "Site description"},
    "site_keywords": {"value": "blog,tech,programming", "description": "Site keywords (comma separated)"},
    "site_logo": {"value": "", "description": "Site logo URL"},
    "github_url": {"value": "", "description": "GitHub profile URL"},
    "twitter_url": {"value": "", "description": "Twitter/X URL"},
    "weibo_url": {"value": "", "description": "Weibo URL"},
    "comment_max_depth": {"value": "3", "description": "Maximum comment reply depth (1-5)"},
    "comment_filter_words": {"value": "", "description": "Filtered words (comma separated)"},
    "comment_captcha_enabled": {"value": "false", "description": "Require a captcha for comments"},
    "image_host_provider": {"value": "local", "description": "Image host provider"},
    "posts_per_page": {"value": "10", "description": "Posts per page"},
    "comments_per_page": {"value": "20", "description": "Comments per page"},
    "allow_registration": {"value": "true", "description": "Allow new user registration"},
    "moderation_enabled": {"value": "false", "description": "Hold comments for moderation"},
    "section_blog_enabled": {"value": "true", "description": "Show the blog section"},
    "section_shop_enabled": {"value": "true", "description": "Show the shop section"},
    "section_trending_enabled": {"value": "true", "description": "Show the trending section"},
    "section_guestbook_enabled": {"value": "true", "description": "Show the guestbook section"},
}

PUBLIC_SETTINGS_KEYS = [
    "site_title",
    "site_description",
    "site_keywords",
    "site_logo",
    "github_url",
    "twitter_url",
    "weibo_url",
    "section_blog_enabled",
    "section_shop_enabled",
    "section_trending_enabled",
    "section_guestbook_enabled",
]

# key -> (min, max) for integer settings
_INT_RANGES = {
    "comment_max_depth": (1, 5),
    "posts_per_page": (1, 100),
    "comments_per_page": (1, 100),
}


def get_setting(db: Session, key: str, default: Optional[str] = None) -> Optional[str]:
    """Return a stored setting, falling back to the code default."""
    row = db.get(SystemSetting, key)
    if row is not None:
        return row.value
    if default is not None:
        return default
    entry = DEFAULT_SETTINGS.get(key)
    return entry["value"] if entry else None


def get_int_setting(db: Session, key: str, default: int, lo: int, hi: int) -> int:
    """Read an integer setting and clamp it to [lo, hi]."""
    raw = get_setting(db, key)
    try:
        value = int(raw)
    except (TypeError, ValueError):
        value = default
    return max(lo, min(hi, value))


def get_all_settings(db: Session) -> Dict[str, Dict[str, str]]:
    merged = {key: dict(entry) for key, entry in DEFAULT_SETTINGS.items()}
    for row in db.query(SystemSetting).all():
        merged[row.key] = {"value": row.value, "description": row.description or ""}
    return merged


def get_public_settings(db: Session) -> Dict[str, str]:
    cached = redis_client.get_json(PUBLIC_CACHE_KEY)
    if cached is not None:
        return cached

    result = {key: DEFAULT_SETTINGS[key]["value"] for key in PUBLIC_SETTINGS_KEYS}
    rows = db.query(SystemSetting).filter(SystemSetting.key.in_(PUBLIC_SETTINGS_KEYS)).all()
    for row in rows:
        result[row.key] = row.value

    redis_client.set_json(PUBLIC_CACHE_KEY, result)
    return result


def update_setting(db: Session, key: str, value) -> Dict[str, str]:
    """
    Upsert a single setting.

    Args:
        db: Database session
        key: Setting key
        value: New value, stored as a string

    Returns:
        Dict with the stored key and value
    """
    if not key or value is None:
        raise ServiceError("key and value are required")

    value = ("true" if value else "false") if isinstance(value, bool) else str(value)
    if key in _INT_RANGES:
        lo, hi = _INT_RANGES[key]
        try:
            number = int(value)
        except ValueError:
            number = None
        if number is None or not lo <= number <= hi:
            raise ServiceError(f"{key} must be a number between {lo} and {hi}")

    row = db.get(SystemSetting, key)
    if row is None:
        description = DEFAULT_SETTINGS.get(key, {}).get("description", "")
        row = SystemSetting(key=key, value=value, description=description)
        db.add(row)
    else:
        row.value = value
    db.flush()

    redis_client.delete(PUBLIC_CACHE_KEY)
    logger.info(f"Setting {key} updated")
    return {"key": row.key, "value": row.value}


def update_settings(db: Session, values: Dict[str, object]) -> Dict[str, str]:
    return {key: update_setting(db, key, value)["value"] for key, value in values.items()}
