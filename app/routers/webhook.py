import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.ai.base import AgentProvider
from app.ai.service import get_agent_provider
from app.core.database import get_db
from app.models.merchant import Merchant
from app.models.processed_message import ProcessedMessage
from app.services.catalog_export import CatalogExporter, get_catalog_exporter
from app.services.merchants import find_merchant_by_session, find_merchant_by_whatsapp_number
from app.services.orchestrator import handle_incoming_message
from app.whatsapp.base import mask_chat_id
from app.whatsapp.inbound import InboundMessage, parse_simple_payload, parse_waha_payload
from app.whatsapp.service import WhatsAppService, get_whatsapp_service

router = APIRouter(tags=["webhook"])
logger = logging.getLogger(__name__)


async def _read_json(request: Request):
    try:
        return await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise HTTPException(status_code=400, detail="Invalid JSON body")


def _already_processed(db: Session, message_id: str | None) -> bool:
    """Gateways redeliver events; each provider message id is handled once."""
    if not message_id:
        return False
    if db.query(ProcessedMessage).filter_by(message_id=message_id).first():
        return True
    db.add(ProcessedMessage(message_id=message_id))
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        return True
    return False


async def _dispatch(
    db: Session,
    merchant: Merchant | None,
    inbound: InboundMessage,
    body: dict,
    agent: AgentProvider,
    gateway: WhatsAppService,
    exporter: CatalogExporter,
):
    if merchant is None:
        logger.warning("no merchant for %s=%s", inbound.route_kind, inbound.route_key)
        return {"status": "ignored", "reason": "unknown_merchant"}

    if _already_processed(db, inbound.message_id):
        logger.info("duplicate message_id=%s", inbound.message_id, extra={"merchant_id": merchant.id})
        return {"status": "duplicate"}

    gateway.log_inbound(
        db,
        merchant_id=merchant.id,
        chat_id=inbound.reply_chat_id,
        payload=body if isinstance(body, dict) else {"body": body},
        provider_message_id=inbound.message_id,
    )

    if not merchant.is_active():
        logger.info(
            "merchant inactive, message from %s not answered",
            mask_chat_id(inbound.reply_chat_id),
            extra={"merchant_id": merchant.id},
        )
        return {"status": "ignored", "reason": "merchant_inactive"}

    handled = await handle_incoming_message(
        db,
        merchant,
        inbound,
        agent=agent,
        gateway=gateway,
        exporter=exporter,
    )
    return {
        "status": "error" if handled.delivery_status == "failed" else "ok",
        "flow": handled.flow,
        "delivery": handled.delivery_status,
    }


@router.post("/webhook/whatsapp")
async def whatsapp_webhook(
    request: Request,
    db: Session = Depends(get_db),
    agent: AgentProvider = Depends(get_agent_provider),
    gateway: WhatsAppService = Depends(get_whatsapp_service),
    exporter: CatalogExporter = Depends(get_catalog_exporter),
):
    body = await _read_json(request)
    inbound = parse_simple_payload(body)
    if inbound is None:
        return {"status": "ignored", "reason": "unsupported_payload"}

    merchant = find_merchant_by_whatsapp_number(db, inbound.route_key)
    return await _dispatch(db, merchant, inbound, body, agent, gateway, exporter)


@router.post("/webhook/waha")
async def waha_webhook(
    request: Request,
    db: Session = Depends(get_db),
    agent: AgentProvider = Depends(get_agent_provider),
    gateway: WhatsAppService = Depends(get_whatsapp_service),
    exporter: CatalogExporter = Depends(get_catalog_exporter),
):
    body = await _read_json(request)
    inbound = parse_waha_payload(body)
    if inbound is None:
        return {"status": "ignored", "reason": "unsupported_payload"}

    merchant = find_merchant_by_session(db, inbound.route_key)
    return await _dispatch(db, merchant, inbound, body, agent, gateway, exporter)
