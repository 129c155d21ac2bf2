"""HTTP API of the Iftar portal."""

import json
import logging
from contextlib import asynccontextmanager
from typing import Optional, List, Dict, Any

from fastapi import APIRouter, Depends, FastAPI, File, Form, HTTPException, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, Field
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy.ext.asyncio import AsyncSession

from .auth import AdminAuthService, limiter, require_admin
from .checkin import CheckInService
from .config import PortalConfig
from .connectors import GatewayConnector
from .database import close_db, get_db, init_db
from .dependencies import get_config, get_gateway, get_notifier, get_storage
from .exceptions import PortalError
from .exports import ExportService
from .memberships import MembershipService
from .notifications import NotificationService
from .reconciliation.api import router as webhook_router
from .registration import RegistrationService
from .services import ManualPaymentService, PaymentService, ProofUpload
from .storage import ObjectStorage

logger = logging.getLogger(__name__)

REGISTRATION_RATE_LIMIT = "20/minute"
LOGIN_RATE_LIMIT = "10/minute"

public_router = APIRouter(tags=["public"])
admin_router = APIRouter(prefix="/admin", tags=["admin"])


class RegistrationBody(BaseModel):
    first_name: str
    last_name: str
    email: str
    contact_number: str
    is_member: bool = False


class GatewayPaymentBody(BaseModel):
    payment_method: str = "MOBILE_MONEY"
    places: int = Field(default=1, ge=1)


class MembershipBody(BaseModel):
    first_name: str
    last_name: str
    email: str
    contact_number: str
    profession: Optional[str] = None
    address: Optional[str] = None
    subscription_amount: int = 100000
    subscription_start_month: Optional[str] = None
    payment_method: Optional[str] = None
    payment_frequency: Optional[str] = None
    competence_domains: Optional[str] = None
    club_expectations: List[str] = Field(default_factory=list)
    other_expectations: Optional[str] = None


class LoginBody(BaseModel):
    email: str
    password: str


class RejectBody(BaseModel):
    reason: str = ""


class QuickPaymentBody(BaseModel):
    phone_number: Optional[str] = None


class CodeCheckInBody(BaseModel):
    code: str


class QrCheckInBody(BaseModel):
    qr_code_id: str


class SelfCheckInBody(BaseModel):
    code: str


class MessageBody(BaseModel):
    subject: str
    message: str
    participant_ids: List[str] = Field(default_factory=list)


# Public endpoints

@public_router.get("/health")
async def health(gateway: GatewayConnector = Depends(get_gateway)):
    return {"status": "ok", "gateway": gateway.health_check()}


@public_router.post("/participants", status_code=201)
@limiter.limit(REGISTRATION_RATE_LIMIT)
async def register_participant(
    request: Request,
    body: RegistrationBody,
    db: AsyncSession = Depends(get_db),
    config: PortalConfig = Depends(get_config),
    notifier: NotificationService = Depends(get_notifier),
):
    """Register a participant and text them their check-in code."""
    service = RegistrationService(db, config=config, notifier=notifier)
    participant = await service.register(**body.model_dump())
    return participant.to_dict()


@public_router.get("/participants/{participant_id}")
async def get_participant(participant_id: str, db: AsyncSession = Depends(get_db)):
    participant = await RegistrationService(db).get_participant(participant_id)
    return participant.to_dict()


@public_router.get("/participants/{participant_id}/payment-status")
async def get_payment_status(
    participant_id: str,
    db: AsyncSession = Depends(get_db),
    config: PortalConfig = Depends(get_config),
    gateway: GatewayConnector = Depends(get_gateway),
):
    """Polled by the confirmation page until the payment settles."""
    service = PaymentService(db, config=config, connector=gateway)
    return await service.get_payment_status(participant_id)


@public_router.post("/participants/{participant_id}/payments", status_code=201)
async def initiate_payment(
    participant_id: str,
    body: GatewayPaymentBody,
    db: AsyncSession = Depends(get_db),
    config: PortalConfig = Depends(get_config),
    gateway: GatewayConnector = Depends(get_gateway),
):
    """Open a gateway checkout; the client is redirected to payment_url."""
    service = PaymentService(db, config=config, connector=gateway)
    payment = await service.initiate_gateway_payment(participant_id, body.payment_method, body.places)
    return payment.to_dict()


@public_router.post("/participants/{participant_id}/manual-payments", status_code=201)
async def submit_manual_payment(
    participant_id: str,
    payment_method: str = Form(...),
    phone_number: str = Form(""),
    comments: str = Form(""),
    companions: str = Form("[]"),
    screenshot: Optional[UploadFile] = File(None),
    db: AsyncSession = Depends(get_db),
    config: PortalConfig = Depends(get_config),
    storage: ObjectStorage = Depends(get_storage),
    notifier: NotificationService = Depends(get_notifier),
):
    """
    Submit a proof of mobile-money transfer.

    ``companions`` is a JSON list of ``{"first_name", "last_name"}`` objects.
    """
    try:
        companion_list = json.loads(companions or "[]")
    except ValueError:
        raise HTTPException(status_code=400, detail="companions must be a JSON list")
    if not isinstance(companion_list, list) or not all(isinstance(c, dict) for c in companion_list):
        raise HTTPException(status_code=400, detail="companions must be a JSON list")

    upload = None
    if screenshot is not None:
        upload = ProofUpload(
            filename=screenshot.filename or "",
            content_type=screenshot.content_type or "",
            data=await screenshot.read(),
        )

    service = ManualPaymentService(db, config=config, storage=storage, notifier=notifier)
    manual_payment = await service.submit(
        participant_id,
        payment_method=payment_method,
        phone_number=phone_number,
        upload=upload,
        comments=comments,
        companions=companion_list,
    )
    return manual_payment.to_dict()


@public_router.post("/participants/{participant_id}/check-in")
async def self_check_in(
    participant_id: str,
    body: SelfCheckInBody,
    db: AsyncSession = Depends(get_db),
    config: PortalConfig = Depends(get_config),
):
    """Participant confirms their own presence with the code announced on site."""
    result = await CheckInService(db).self_check_in(participant_id, body.code, config.self_check_in_code)
    return result.to_dict()


@public_router.post("/memberships", status_code=201)
@limiter.limit(REGISTRATION_RATE_LIMIT)
async def request_membership(
    request: Request,
    body: MembershipBody,
    db: AsyncSession = Depends(get_db),
    config: PortalConfig = Depends(get_config),
    notifier: NotificationService = Depends(get_notifier),
):
    service = MembershipService(db, config=config, notifier=notifier)
    membership = await service.request(**body.model_dump())
    return membership.to_dict()


# Admin endpoints

@admin_router.post("/login")
@limiter.limit(LOGIN_RATE_LIMIT)
async def admin_login(
    request: Request,
    body: LoginBody,
    db: AsyncSession = Depends(get_db),
    config: PortalConfig = Depends(get_config),
):
    token = await AdminAuthService(db, config).authenticate(body.email, body.password)
    return {"access_token": token, "token_type": "bearer", "expires_in": config.admin_token_expire_minutes * 60}


@admin_router.get("/manual-payments")
async def list_manual_payments(
    status: Optional[str] = Query(default=None, description="pending, completed or rejected"),
    search: Optional[str] = Query(default=None, description="Name, email or phone fragment"),
    db: AsyncSession = Depends(get_db),
    admin: str = Depends(require_admin),
):
    service = ManualPaymentService(db)
    items = await service.list_manual_payments(status=status, search=search)
    return {"items": items, "statistics": await service.statistics()}


@admin_router.get("/manual-payments/{manual_payment_id}")
async def get_manual_payment(
    manual_payment_id: str,
    db: AsyncSession = Depends(get_db),
    admin: str = Depends(require_admin),
):
    return await ManualPaymentService(db).get_manual_payment(manual_payment_id)


@admin_router.post("/manual-payments/{manual_payment_id}/validate")
async def validate_manual_payment(
    manual_payment_id: str,
    db: AsyncSession = Depends(get_db),
    config: PortalConfig = Depends(get_config),
    notifier: NotificationService = Depends(get_notifier),
    admin: str = Depends(require_admin),
):
    service = ManualPaymentService(db, config=config, notifier=notifier)
    manual_payment = await service.validate(manual_payment_id, validated_by=admin)
    return manual_payment.to_dict()


@admin_router.post("/manual-payments/{manual_payment_id}/reject")
async def reject_manual_payment(
    manual_payment_id: str,
    body: RejectBody,
    db: AsyncSession = Depends(get_db),
    config: PortalConfig = Depends(get_config),
    notifier: NotificationService = Depends(get_notifier),
    admin: str = Depends(require_admin),
):
    service = ManualPaymentService(db, config=config, notifier=notifier)
    manual_payment = await service.reject(manual_payment_id, reason=body.reason, rejected_by=admin)
    return manual_payment.to_dict()


@admin_router.post("/participants/{participant_id}/quick-payment")
async def quick_payment(
    participant_id: str,
    body: QuickPaymentBody,
    db: AsyncSession = Depends(get_db),
    config: PortalConfig = Depends(get_config),
    notifier: NotificationService = Depends(get_notifier),
    admin: str = Depends(require_admin),
):
    service = ManualPaymentService(db, config=config, notifier=notifier)
    manual_payment = await service.quick_payment(participant_id, body.phone_number, validated_by=admin)
    return manual_payment.to_dict()


@admin_router.delete("/participants/{participant_id}")
async def delete_participant(
    participant_id: str,
    db: AsyncSession = Depends(get_db),
    admin: str = Depends(require_admin),
):
    await RegistrationService(db).delete_participant(participant_id)
    logger.warning(f"Participant {participant_id} deleted by {admin}")
    return {"success": True, "deleted": participant_id}


@admin_router.delete("/participants")
async def delete_all_participants(
    confirm: bool = Query(default=False, description="Must be true to wipe every participant"),
    db: AsyncSession = Depends(get_db),
    admin: str = Depends(require_admin),
):
    if not confirm:
        raise HTTPException(status_code=400, detail="Pass confirm=true to delete every participant")
    deleted = await RegistrationService(db).wipe_all()
    logger.warning(f"All participants ({deleted}) deleted by {admin}")
    return {"success": True, "deleted": deleted}


@admin_router.get("/check-in/code/{code}")
async def lookup_code(
    code: str,
    db: AsyncSession = Depends(get_db),
    admin: str = Depends(require_admin),
):
    participant = await CheckInService(db).lookup_by_code(code)
    if participant is None:
        raise HTTPException(status_code=404, detail="Aucun participant trouvé avec ce code")
    return participant


@admin_router.post("/check-in/code")
async def check_in_by_code(
    body: CodeCheckInBody,
    db: AsyncSession = Depends(get_db),
    admin: str = Depends(require_admin),
):
    result = await CheckInService(db).check_in_by_code(body.code, checked_by=admin)
    return result.to_dict()


@admin_router.post("/check-in/qr")
async def check_in_by_qr(
    body: QrCheckInBody,
    db: AsyncSession = Depends(get_db),
    admin: str = Depends(require_admin),
):
    result = await CheckInService(db).check_in_by_qr(body.qr_code_id, checked_by=admin)
    return result.to_dict()


@admin_router.get("/memberships")
async def list_memberships(
    status: Optional[str] = Query(default=None, description="pending, approved or rejected"),
    db: AsyncSession = Depends(get_db),
    admin: str = Depends(require_admin),
):
    memberships = await MembershipService(db).list(status)
    return {"items": [m.to_dict() for m in memberships]}


@admin_router.post("/memberships/{membership_id}/approve")
async def approve_membership(
    membership_id: str,
    db: AsyncSession = Depends(get_db),
    config: PortalConfig = Depends(get_config),
    notifier: NotificationService = Depends(get_notifier),
    admin: str = Depends(require_admin),
):
    service = MembershipService(db, config=config, notifier=notifier)
    membership = await service.approve(membership_id, reviewed_by=admin)
    return membership.to_dict()


@admin_router.post("/memberships/{membership_id}/reject")
async def reject_membership(
    membership_id: str,
    body: RejectBody,
    db: AsyncSession = Depends(get_db),
    config: PortalConfig = Depends(get_config),
    notifier: NotificationService = Depends(get_notifier),
    admin: str = Depends(require_admin),
):
    service = MembershipService(db, config=config, notifier=notifier)
    membership = await service.reject(membership_id, reason=body.reason, reviewed_by=admin)
    return membership.to_dict()


@admin_router.post("/messages")
async def send_message(
    body: MessageBody,
    db: AsyncSession = Depends(get_db),
    config: PortalConfig = Depends(get_config),
    notifier: NotificationService = Depends(get_notifier),
    admin: str = Depends(require_admin),
):
    """Email a message to the given participants, or to all of them."""
    service = RegistrationService(db, config=config, notifier=notifier)
    outcome = await service.message_participants(body.subject, body.message, body.participant_ids)
    logger.info(f"Message '{body.subject}' sent by {admin}: {outcome['sent']} sent, {outcome['failed']} failed")
    return outcome


@admin_router.get("/export/participants.csv")
async def export_participants(
    db: AsyncSession = Depends(get_db),
    admin: str = Depends(require_admin),
):
    content = await ExportService(db).participants_csv()
    return PlainTextResponse(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": "attachment; filename=participants.csv"},
    )


@admin_router.get("/statistics")
async def statistics(
    db: AsyncSession = Depends(get_db),
    admin: str = Depends(require_admin),
) -> Dict[str, Any]:
    return await ExportService(db).statistics()


async def portal_error_handler(request: Request, exc: PortalError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def create_app(init_database: bool = True) -> FastAPI:
    """Build the FastAPI application.

    Args:
        init_database: Open the global database on startup and close it on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if init_database:
            await init_db()
        yield
        if init_database:
            await close_db()

    app = FastAPI(title="Iftar Portal API", lifespan=lifespan)
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(PortalError, portal_error_handler)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(public_router)
    app.include_router(webhook_router)
    app.include_router(admin_router)
    return app


app = create_app()
