import logging
import re
import secrets
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from wakili.domain.errors import ValidationError
from wakili.domain.notifications import service as notifications
from wakili.domain.providers import service as provider_service
from wakili.domain.providers.db_models import ClientProfile
from wakili.infra.clock import normalize_datetime, utc_now
from wakili.infra.notifications import NotificationSink
from wakili.infra.verification_store import VerificationStore
from wakili.settings import settings

logger = logging.getLogger(__name__)

KENYAN_PHONE_RE = re.compile(r"^(\+254|254|0)([17]\d{8})$")
CODE_LENGTH = 6


def normalize_phone_number(phone_number: str) -> str:
    """Return the 254XXXXXXXXX form of a Kenyan mobile number."""
    cleaned = re.sub(r"[\s-]", "", phone_number or "")
    match = KENYAN_PHONE_RE.match(cleaned)
    if match is None:
        raise ValidationError(
            "Invalid Kenyan phone number format",
            errors=[{"field": "phone_number", "message": "Expected +254XXXXXXXXX, 254XXXXXXXXX or 0XXXXXXXXX"}],
        )
    return f"254{match.group(2)}"


def generate_code() -> str:
    return f"{secrets.randbelow(10**CODE_LENGTH):0{CODE_LENGTH}d}"


def _store_key(client_id: str) -> str:
    return f"phone:{client_id}"


async def send_verification_code(
    session: AsyncSession,
    store: VerificationStore,
    sink: NotificationSink | None,
    client_id: str,
    phone_number: str,
) -> str:
    normalized = normalize_phone_number(phone_number)
    client = await provider_service.get_client(session, client_id)
    code = generate_code()
    await store.put(_store_key(client_id), f"{normalized}:{code}", settings.verification_code_ttl_seconds)

    if client.phone_number != normalized:
        client.phone_number = normalized
        client.phone_verified_at = None
        await session.commit()

    logger.info("verification_code_sent", extra={"extra": {"client_id": client_id, "phone_number": normalized}})
    await notifications.emit_notification(
        sink,
        notifications.PHONE_VERIFICATION_CODE,
        recipients=[client_id],
        phone_number=normalized,
        code=code,
        expires_in_seconds=settings.verification_code_ttl_seconds,
    )
    return normalized


async def verify_code(
    session: AsyncSession,
    store: VerificationStore,
    client_id: str,
    code: str,
    *,
    now: datetime | None = None,
) -> ClientProfile:
    key = _store_key(client_id)
    stored = await store.get(key)
    if stored is None:
        raise ValidationError("Verification code expired or not found")
    phone_number, expected = stored.split(":", 1)
    if not secrets.compare_digest(expected, (code or "").strip()):
        logger.info("verification_code_mismatch", extra={"extra": {"client_id": client_id}})
        raise ValidationError("Invalid verification code")

    client = await provider_service.get_client(session, client_id)
    client.phone_number = phone_number
    client.phone_verified_at = normalize_datetime(now or utc_now())
    await session.commit()
    await session.refresh(client)
    await store.delete(key)

    logger.info("phone_verified", extra={"extra": {"client_id": client_id}})
    return client
