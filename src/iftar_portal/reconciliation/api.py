"""HTTP endpoint receiving gateway payment notifications."""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, Response
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth import limiter
from ..config import PortalConfig
from ..database import get_db
from ..dependencies import get_config, get_notifier
from ..exceptions import PortalError
from ..notifications import NotificationService
from .models import GatewayNotification
from .service import ReconciliationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

WEBHOOK_RATE_LIMIT = "120/minute"

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
}


def _reply(status_code: int, body: Dict[str, Any]) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=body, headers=CORS_HEADERS)


@router.api_route(
    "/cinetpay",
    methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
)
@limiter.limit(WEBHOOK_RATE_LIMIT)
async def cinetpay_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    config: PortalConfig = Depends(get_config),
    notifier: NotificationService = Depends(get_notifier),
):
    """
    Receive a CinetPay notification and reconcile the matching payment.

    Responds 200 with the new status, 400 for malformed or foreign
    notifications, 404 when no payment matches, 405 for methods other
    than POST and 500 on internal failure.
    """
    if request.method == "OPTIONS":
        return Response(status_code=200, headers=CORS_HEADERS)
    if request.method != "POST":
        return _reply(405, {"success": False, "error": "Méthode non autorisée"})

    try:
        body = await request.json()
    except ValueError:
        return _reply(400, {"success": False, "error": "Corps de requête JSON invalide"})
    if not isinstance(body, dict):
        return _reply(400, {"success": False, "error": "Corps de requête JSON invalide"})

    try:
        notification = GatewayNotification.model_validate(body)
    except PydanticValidationError as e:
        return _reply(400, {"success": False, "error": "Données invalides", "details": [err["msg"] for err in e.errors()]})

    service = ReconciliationService(db, config=config, notifier=notifier)
    try:
        outcome = await service.handle_notification(notification)
    except PortalError as e:
        await db.rollback()
        return _reply(e.status_code, e.to_dict())
    except Exception:
        logger.exception(f"Failed to process notification for {notification.cpm_trans_id}")
        await db.rollback()
        return _reply(500, {"success": False, "error": "Erreur interne du serveur"})

    logger.info(
        f"Notification {notification.cpm_trans_id} applied to payment {outcome.payment_id}: "
        f"{outcome.previous_status} -> {outcome.new_status} ({outcome.strategy.value})"
    )
    return _reply(200, outcome.to_response())
