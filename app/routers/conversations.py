import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.deps import get_merchant_or_404, require_admin_key
from app.models.merchant import Merchant
from app.services.catalog_export import catalog_cache
from app.services.conversation_store import get_conversation_state, reset_conversation_state
from app.services.customers import get_customer

router = APIRouter(
    prefix="/api/merchants/{merchant_id}",
    tags=["conversations"],
    dependencies=[Depends(require_admin_key)],
)
logger = logging.getLogger(__name__)


@router.post("/customers/{customer_id}/conversation/reset")
def reset_customer_conversation(
    customer_id: int,
    merchant: Merchant = Depends(get_merchant_or_404),
    db: Session = Depends(get_db),
):
    """Hands a conversation back to the bot (clears NEEDS_HUMAN and any pending question)."""
    customer = get_customer(db, merchant.id, customer_id)
    if customer is None:
        raise HTTPException(status_code=404, detail="Customer not found")

    previous = get_conversation_state(db, merchant.id, customer.id)
    document = reset_conversation_state(
        db,
        merchant.id,
        customer.id,
        {"opted_out": previous.opted_out or None},
    )
    logger.info(
        "conversation reset by merchant previous_step=%s",
        previous.step,
        extra={"merchant_id": merchant.id, "customer_id": customer.id},
    )
    return {"status": "ok", "previous_step": previous.step, "state": document}


@router.post("/catalog/invalidate")
def invalidate_catalog(merchant: Merchant = Depends(get_merchant_or_404)):
    catalog_cache.invalidate(merchant.id)
    return {"status": "ok"}
