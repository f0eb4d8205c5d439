"""Per (merchant, customer) conversation document with merge semantics.

Writes are patches, not whole-document replacements: keys in the patch
overwrite stored keys, a ``None`` value deletes the key, and an empty patch
given to ``reset_conversation_state`` clears the whole document. The row is
read with ``SELECT ... FOR UPDATE`` where the database supports it so two
messages from the same customer merge instead of losing an update.
"""
from __future__ import annotations

import logging
from typing import Any, Mapping

from sqlalchemy.orm import Session

from app.conversation.states import ConversationState
from app.models.conversation_state import ConversationStateRecord

logger = logging.getLogger(__name__)


def merge_document(current: Mapping[str, Any] | None, patch: Mapping[str, Any]) -> dict[str, Any]:
    merged = dict(current or {})
    for key, value in patch.items():
        if value is None:
            merged.pop(key, None)
        else:
            merged[key] = value
    return merged


def _locked_record(db: Session, merchant_id: int, customer_id: int) -> ConversationStateRecord:
    record = (
        db.query(ConversationStateRecord)
        .filter(
            ConversationStateRecord.merchant_id == merchant_id,
            ConversationStateRecord.customer_id == customer_id,
        )
        .with_for_update()
        .first()
    )
    if record is None:
        record = ConversationStateRecord(merchant_id=merchant_id, customer_id=customer_id, state={})
        db.add(record)
    return record


def get_conversation_document(db: Session, merchant_id: int, customer_id: int) -> dict[str, Any]:
    record = (
        db.query(ConversationStateRecord)
        .filter(
            ConversationStateRecord.merchant_id == merchant_id,
            ConversationStateRecord.customer_id == customer_id,
        )
        .first()
    )
    if record is None or not isinstance(record.state, dict):
        return {}
    return dict(record.state)


def get_conversation_state(db: Session, merchant_id: int, customer_id: int) -> ConversationState:
    return ConversationState.from_document(get_conversation_document(db, merchant_id, customer_id))


def merge_conversation_state(
    db: Session,
    merchant_id: int,
    customer_id: int,
    patch: Mapping[str, Any],
) -> dict[str, Any]:
    record = _locked_record(db, merchant_id, customer_id)
    merged = merge_document(record.state, patch)
    # New dict so the JSON column is flagged dirty
    record.state = merged
    db.commit()
    return merged


def reset_conversation_state(
    db: Session,
    merchant_id: int,
    customer_id: int,
    document: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    record = _locked_record(db, merchant_id, customer_id)
    record.state = {key: value for key, value in (document or {}).items() if value is not None}
    db.commit()
    return dict(record.state)


def save_conversation_state(
    db: Session,
    merchant_id: int,
    customer_id: int,
    state: ConversationState,
) -> ConversationState:
    merge_conversation_state(db, merchant_id, customer_id, state.to_patch())
    logger.info(
        "conversation state saved step=%s waiting_field=%s",
        state.step,
        state.waiting_field,
        extra={"merchant_id": merchant_id, "customer_id": customer_id},
    )
    return state
