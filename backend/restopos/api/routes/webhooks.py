"""Inbound payment provider webhooks.

Mounted outside the API prefix at ``/webhooks``. There is no staff auth: when
``SEPAY_WEBHOOK_API_KEY`` is set the provider must send
``Authorization: Apikey <key>``.
"""

import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Header, Request

from restopos.core.config import settings
from restopos.core.exceptions import UnauthorizedError
from restopos.core.rate_limit import limiter
from restopos.db.session import DbSession
from restopos.schemas.payment import SepayWebhook
from restopos.services.payment_service import PaymentService

logger = logging.getLogger(__name__)

router = APIRouter()


def verify_webhook_key(authorization: Optional[str]) -> None:
    expected = settings.sepay_webhook_api_key
    if not expected:
        return
    scheme, _, key = (authorization or "").partition(" ")
    if scheme.lower() != "apikey" or not hmac.compare_digest(key.strip(), expected):
        logger.warning("Bank webhook rejected: bad or missing API key")
        raise UnauthorizedError("Invalid webhook API key")


@router.post("/sepay")
@limiter.limit("120/minute")
def sepay_webhook(
    request: Request,
    body: SepayWebhook,
    db: DbSession,
    authorization: Optional[str] = Header(None),
):
    """Settle a pending bank transfer payment from a SePay notification.

    A replayed delivery gets the same answer its first delivery got.
    """
    verify_webhook_key(authorization)
    logger.info(f"Bank webhook {body.id} from {body.gateway}: {body.transfer_type} {body.transfer_amount}")
    return PaymentService(db).handle_bank_webhook(body.model_dump())
