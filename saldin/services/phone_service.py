import re
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from saldin.logging_config import get_logger
from saldin.models import WhatsAppUser

logger = get_logger("phone_service")

BRAZIL_COUNTRY_CODE = "55"
MOBILE_DIGIT = "9"

_NON_DIGITS = re.compile(r"\D")


def normalize_phone(raw: str | None) -> str:
    """Keep digits only ("+55 (47) 99999-8888" -> "5547999998888")."""
    return _NON_DIGITS.sub("", raw or "")


def phone_variants(raw: str | None) -> list[str]:
    """
    Ordered candidate forms of a sender number.

    Brazilian mobiles may be stored with or without the extra leading "9" of the
    local part, so the alternate form is appended after the original:
    - 8-digit local part -> original, then with "9" inserted
    - 9-digit local part starting with "9" -> original, then with it removed
    """
    phone = normalize_phone(raw)
    if not phone:
        return []

    variants = [phone]
    if phone.startswith(BRAZIL_COUNTRY_CODE) and len(phone) >= 10:
        area_code = phone[2:4]
        local = phone[4:]
        if len(local) == 8:
            variants.append(f"{BRAZIL_COUNTRY_CODE}{area_code}{MOBILE_DIGIT}{local}")
        elif len(local) == 9 and local.startswith(MOBILE_DIGIT):
            variants.append(f"{BRAZIL_COUNTRY_CODE}{area_code}{local[1:]}")
    return variants


def find_verified_user_id(db: Session, raw_phone: str | None) -> Optional[UUID]:
    """Resolve a sender number to the linked account, or None when not linked/verified."""
    variants = phone_variants(raw_phone)
    if not variants:
        return None

    links = (
        db.query(WhatsAppUser)
        .filter(WhatsAppUser.phone_number.in_(variants), WhatsAppUser.is_verified.is_(True))
        .order_by(WhatsAppUser.created_at.asc())
        .all()
    )
    if not links:
        logger.info("No verified account for sender", extra={"context": {"variants": variants}})
        return None

    if len(links) > 1:
        logger.warning(
            "Multiple verified accounts share a phone number",
            extra={"context": {"variants": variants, "matches": len(links)}},
        )

    # Prefer the exact number over the alternate form; ties keep the oldest link.
    best = min(links, key=lambda link: variants.index(link.phone_number))
    return best.user_id
