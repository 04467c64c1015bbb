"""
Delivery ETA estimate.

Orders to the home district (Dhaka) arrive in one to two days, everywhere
else in two to four. The strings are shown to the customer as-is.
"""
from app.core.config import settings

HOME_ETA = "১-২ দিন"
OTHER_ETA = "২-৪ দিন"

# Order confirmations use an en dash
HOME_ETA_CONFIRMATION = "১–২ দিন"
OTHER_ETA_CONFIRMATION = "২–৪ দিন"


def is_home_district(district: str | None, keywords: list[str] | None = None) -> bool:
    d = (district or "").lower()
    return any(k in d for k in (keywords if keywords is not None else settings.home_district_keywords))


def estimate_eta(district: str | None, keywords: list[str] | None = None) -> str:
    return HOME_ETA if is_home_district(district, keywords) else OTHER_ETA


def confirmation_eta(district: str | None, keywords: list[str] | None = None) -> str:
    return HOME_ETA_CONFIRMATION if is_home_district(district, keywords) else OTHER_ETA_CONFIRMATION
