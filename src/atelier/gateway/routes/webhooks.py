"""支付 webhook 路由

POST /api/webhooks/payments: 支付方确认充值。
provider_txn_id 作为 PURCHASE 分录的幂等键，重放不会重复入账。
配置了 ATELIER_WEBHOOK_SECRET 时校验 X-Webhook-Signature
（原始请求体的 HMAC-SHA256 十六进制摘要）。
"""

import hashlib
import hmac

import structlog
from atelier.core.config import get_webhook_secret
from atelier.core.errors import ValidationError
from atelier.core.lifecycle import LifecycleEngine
from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError
from starlette.responses import JSONResponse

from ..deps import get_engine

log = structlog.get_logger()

router = APIRouter()


class PaymentConfirmed(BaseModel):
    """支付确认事件"""

    account_id: str = Field(min_length=1)
    credits: int = Field(gt=0)
    provider_txn_id: str = Field(min_length=1)


def sign_payload(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def verify_signature(secret: str, body: bytes, signature: str | None) -> bool:
    if not secret:
        return True
    if not signature:
        return False
    return hmac.compare_digest(sign_payload(secret, body), signature.strip().lower())


@router.post("/api/webhooks/payments")
async def payment_webhook(
    request: Request,
    engine: LifecycleEngine = Depends(get_engine),
):
    """记录充值

    - 201: 新入账
    - 200: 重放（返回首次入账的分录）
    - 401: 签名校验失败
    """
    body = await request.body()
    if not verify_signature(
        get_webhook_secret(), body, request.headers.get("x-webhook-signature")
    ):
        log.warning("payment_webhook_signature_invalid")
        return JSONResponse(
            status_code=401,
            content={
                "error": {
                    "code": "INVALID_SIGNATURE",
                    "message": "Webhook signature verification failed",
                    "details": {},
                }
            },
        )

    try:
        event = PaymentConfirmed.model_validate_json(body)
    except PydanticValidationError as e:
        raise ValidationError(
            "Invalid payment event",
            details={"errors": e.errors(include_url=False)},
        ) from e

    result = await engine.record_purchase(
        event.account_id, event.credits, event.provider_txn_id
    )
    return JSONResponse(
        status_code=200 if result.replayed else 201,
        content={
            "entry": result.entry.model_dump(mode="json"),
            "balance": result.balance,
            "replayed": result.replayed,
        },
    )
