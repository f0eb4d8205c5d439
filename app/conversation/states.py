"""Typed conversation state.

The state is persisted as a loose JSON document (the external agent reads it
and patches it), but inside the service it is always handled as a
``ConversationState``. ``from_document`` turns any stored or patched document
into a legal state; ``to_patch`` turns it back into a merge patch.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Mapping

from app.conversation.delivery_dates import parse_stored_timestamp
from app.conversation.validators import RECIPIENT_SELF, RECIPIENT_THIRD_PARTY, fits_column

ASKING_INFO = "ASKING_INFO"
AWAITING_CONFIRMATION = "AWAITING_CONFIRMATION"
COMPLETED = "COMPLETED"
NEEDS_HUMAN = "NEEDS_HUMAN"

STEPS = (None, ASKING_INFO, AWAITING_CONFIRMATION, COMPLETED, NEEDS_HUMAN)
RECIPIENT_MODES = (RECIPIENT_SELF, RECIPIENT_THIRD_PARTY)

# Older flows stored the customer's own name under this key
_LEGACY_FIELDS = {"self_name": "name"}

DRAFT_KEYS = (
    "recipient_mode",
    "recipient_name",
    "recipient_phone",
    "recipient_address",
    "delivery_requested_raw",
    "delivery_requested_at",
)
KNOWN_KEYS = set(DRAFT_KEYS) | {
    "step",
    "waiting_field",
    "awaiting_confirmation",
    "order_completed",
    "loop_guard",
    "opted_out",
}


@dataclass(frozen=True)
class OrderDraft:
    """Recipient and delivery details collected for the order in progress."""

    recipient_mode: str | None = None
    recipient_name: str | None = None
    recipient_phone: str | None = None
    recipient_address: str | None = None
    delivery_requested_raw: str | None = None
    delivery_requested_at: str | None = None

    def __post_init__(self) -> None:
        if self.recipient_mode not in (None, *RECIPIENT_MODES):
            raise ValueError(f"unknown recipient_mode {self.recipient_mode!r}")

    @property
    def is_third_party(self) -> bool:
        return self.recipient_mode == RECIPIENT_THIRD_PARTY

    def without_delivery(self) -> "OrderDraft":
        return replace(self, delivery_requested_raw=None, delivery_requested_at=None)


@dataclass(frozen=True)
class LoopGuard:
    key: str
    count: int = 1

    def bump(self, key: str) -> "LoopGuard":
        if key == self.key:
            return LoopGuard(key=key, count=self.count + 1)
        return LoopGuard(key=key, count=1)


@dataclass(frozen=True)
class ConversationState:
    step: str | None = None
    waiting_field: str | None = None
    draft: OrderDraft = field(default_factory=OrderDraft)
    loop_guard: LoopGuard | None = None
    opted_out: bool = False
    extra: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.step not in STEPS:
            raise ValueError(f"unknown step {self.step!r}")
        if self.step == ASKING_INFO and not self.waiting_field:
            raise ValueError("ASKING_INFO needs a waiting_field")
        if self.step != ASKING_INFO and self.waiting_field is not None:
            raise ValueError("waiting_field is only allowed while ASKING_INFO")

    # Constructors, one per step

    @classmethod
    def unset(cls, draft: OrderDraft | None = None, *, opted_out: bool = False) -> "ConversationState":
        return cls(draft=draft or OrderDraft(), opted_out=opted_out)

    @classmethod
    def asking(
        cls,
        waiting_field: str,
        draft: OrderDraft | None = None,
        *,
        loop_guard: LoopGuard | None = None,
        opted_out: bool = False,
    ) -> "ConversationState":
        return cls(
            step=ASKING_INFO,
            waiting_field=waiting_field,
            draft=draft or OrderDraft(),
            loop_guard=loop_guard,
            opted_out=opted_out,
        )

    @classmethod
    def awaiting_confirmation_of(cls, draft: OrderDraft, *, opted_out: bool = False) -> "ConversationState":
        return cls(step=AWAITING_CONFIRMATION, draft=draft, opted_out=opted_out)

    @classmethod
    def completed(cls) -> "ConversationState":
        return cls(step=COMPLETED)

    @classmethod
    def needs_human(cls, draft: OrderDraft, loop_guard: LoopGuard | None = None) -> "ConversationState":
        return cls(step=NEEDS_HUMAN, draft=draft, loop_guard=loop_guard)

    # Derived flags, kept in the stored document for the agent

    @property
    def awaiting_confirmation(self) -> bool:
        return self.step == AWAITING_CONFIRMATION

    @property
    def order_completed(self) -> bool:
        return self.step == COMPLETED

    @property
    def is_handed_off(self) -> bool:
        return self.step == NEEDS_HUMAN

    def with_draft(self, **changes: Any) -> "ConversationState":
        return replace(self, draft=replace(self.draft, **changes))

    # Document mapping

    def to_patch(self) -> dict[str, Any]:
        """Full merge patch: ``None`` values delete the stored key."""
        patch: dict[str, Any] = dict(self.extra)
        patch.update(
            {
                "step": self.step,
                "waiting_field": self.waiting_field,
                "awaiting_confirmation": self.awaiting_confirmation or None,
                "order_completed": self.order_completed or None,
                "loop_guard": (
                    {"key": self.loop_guard.key, "count": self.loop_guard.count}
                    if self.loop_guard
                    else None
                ),
                "opted_out": self.opted_out or None,
            }
        )
        for key in DRAFT_KEYS:
            patch[key] = getattr(self.draft, key)
        return patch

    def to_document(self) -> dict[str, Any]:
        return {key: value for key, value in self.to_patch().items() if value is not None}

    @classmethod
    def from_document(cls, document: Mapping[str, Any] | None) -> "ConversationState":
        if not isinstance(document, Mapping):
            return cls()

        step = _clean_str(document.get("step"))
        step = step.upper() if step else None
        if step not in STEPS:
            step = None
        if step is None and document.get("awaiting_confirmation") is True:
            step = AWAITING_CONFIRMATION
        if step is None and document.get("order_completed") is True:
            step = COMPLETED

        waiting_field = _clean_str(document.get("waiting_field"))
        waiting_field = _LEGACY_FIELDS.get(waiting_field, waiting_field)
        if waiting_field and step is None:
            step = ASKING_INFO
        if step != ASKING_INFO:
            waiting_field = None
        elif not waiting_field:
            step = None

        recipient_mode = _clean_str(document.get("recipient_mode"))
        if recipient_mode not in RECIPIENT_MODES:
            recipient_mode = None

        # A timestamp that is not ISO is dropped so the date gets asked again
        delivery_requested_at = _clean_str(document.get("delivery_requested_at"))
        if parse_stored_timestamp(delivery_requested_at) is None:
            delivery_requested_at = None

        draft = OrderDraft(
            recipient_mode=recipient_mode,
            recipient_name=_bounded_str(document, "recipient_name"),
            recipient_phone=_bounded_str(document, "recipient_phone"),
            recipient_address=_clean_str(document.get("recipient_address")),
            delivery_requested_raw=_bounded_str(document, "delivery_requested_raw"),
            delivery_requested_at=delivery_requested_at,
        )

        return cls(
            step=step,
            waiting_field=waiting_field,
            draft=draft,
            loop_guard=_parse_loop_guard(document.get("loop_guard")),
            opted_out=document.get("opted_out") is True,
            extra={key: value for key, value in document.items() if key not in KNOWN_KEYS},
        )


def _clean_str(value: Any) -> str | None:
    if value is None or isinstance(value, (dict, list, bool)):
        return None
    text = str(value).strip()
    return text or None


def _bounded_str(document: Mapping[str, Any], key: str) -> str | None:
    value = _clean_str(document.get(key))
    return value if value and fits_column(key, value) else None


def _parse_loop_guard(value: Any) -> LoopGuard | None:
    if not isinstance(value, Mapping):
        return None
    key = _clean_str(value.get("key"))
    count = value.get("count")
    if not key or isinstance(count, bool) or not isinstance(count, int) or count < 1:
        return None
    return LoopGuard(key=key, count=count)
