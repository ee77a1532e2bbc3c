"""
Payments API routes.

Keep this thin: provider wire formats stay inside the adapters and all
state changes go through the application services.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.dependencies import (
    Principal,
    get_checkout_service,
    get_current_principal,
    get_reconciliation_service,
    get_refund_service,
    get_registry,
    require_admin,
)
from application.dtos.payments import (
    CheckoutCreateDTO,
    CheckoutResponseDTO,
    ProviderInfoDTO,
    ProvidersResponseDTO,
    RefundCreateDTO,
)
from application.services.checkout_service import CheckoutService
from application.services.reconciliation_service import ReconciliationService
from application.services.refund_service import RefundService
from core.logging_config import get_logger
from core.response import success_response
from core.settings import payment_settings
from infrastructure.external.payments.registry import ProviderRegistry


router = APIRouter(prefix="/payments", tags=["Payments"])
logger = get_logger(__name__)


def _client_ip(request: Request) -> str | None:
    ip = getattr(request.state, "client_ip", None)
    if ip:
        return ip
    return request.client.host if request.client else None


@router.post("/webhook/{provider}", summary="Provider webhook")
async def payments_webhook(
    provider: str,
    request: Request,
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    # 签名基于原始字节，必须在任何解析之前读取
    raw_body = await request.body()
    outcome = await service.handle_webhook(
        provider,
        raw_body,
        dict(request.headers),
        client_ip=_client_ip(request),
        path=request.url.path,
    )
    return success_response(
        data=outcome.model_dump(mode="json"),
        message="Webhook processed" if outcome.processed else "Webhook received",
    )


@router.post("/checkout", summary="Create checkout session")
async def create_checkout(
    payload: CheckoutCreateDTO,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    service: CheckoutService = Depends(get_checkout_service),
):
    payment, result = await service.create_checkout(
        payload.booking_id,
        payload.provider,
        payment_brand=payload.payment_brand,
        ip_address=_client_ip(request),
        return_url=payload.return_url,
        cancel_url=payload.cancel_url,
    )
    data = CheckoutResponseDTO(
        payment_id=payment.id,
        checkout_id=payment.checkout_id,
        payment_url=result.payment_url,
        expires_at=result.expires_at,
        provider=payment.payment_gateway,
    )
    return success_response(data=data.model_dump(mode="json"), message="Checkout created")


@router.get("/status/{checkout_id}", summary="Reconcile payment status")
async def payment_status(
    checkout_id: str,
    principal: Principal = Depends(get_current_principal),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    outcome = await service.poll(checkout_id)
    return success_response(data=outcome.model_dump(mode="json"), message="Payment status")


@router.post("/{payment_id}/refund", summary="Refund a payment")
async def refund_payment(
    payment_id: int,
    payload: RefundCreateDTO,
    principal: Principal = Depends(require_admin),
    service: RefundService = Depends(get_refund_service),
):
    result = await service.refund(
        payment_id,
        payload.amount,
        reason=payload.reason,
        requested_by=principal.subject,
    )
    return success_response(data=result.model_dump(mode="json"), message="Refund completed")


@router.get("/providers", summary="List enabled providers")
async def list_providers(registry: ProviderRegistry = Depends(get_registry)):
    providers = [
        ProviderInfoDTO(
            id=adapter.provider.value,
            display_name=adapter.display_name,
            type=adapter.provider_type,
            min_amount=adapter.min_amount,
            max_amount=adapter.max_amount,
            supported_brands=list(adapter.supported_brands),
        )
        for adapter in registry.enabled()
    ]
    data = ProvidersResponseDTO(
        providers=providers,
        default_currency=payment_settings.default_currency,
        test_mode=payment_settings.test_mode,
    )
    return success_response(data=data.model_dump(mode="json"))
