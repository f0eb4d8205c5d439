"""Closed vocabulary of actions the external agent may request.

The agent is untrusted: every action is validated here, at the boundary, and
anything that does not match one of the models below is dropped with a
warning instead of reaching the database.
"""
from __future__ import annotations

import logging
from typing import Annotated, Any, List, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, TypeAdapter, ValidationError

logger = logging.getLogger(__name__)

PositiveInt = Annotated[int, Field(strict=True, gt=0)]
NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1), Field(strict=True)]


class _Action(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)


class AddToCart(_Action):
    type: Literal["ADD_TO_CART"]
    product_id: PositiveInt
    quantity: PositiveInt = 1


class RemoveFromCart(_Action):
    type: Literal["REMOVE_FROM_CART"]
    product_id: PositiveInt
    quantity: PositiveInt | None = None


class ClearCart(_Action):
    type: Literal["CLEAR_CART"]


class SetState(_Action):
    type: Literal["SET_STATE"]
    state: dict[str, Any] | None = None


class UpdateCustomer(_Action):
    type: Literal["UPDATE_CUSTOMER"]
    field: Literal["name", "address", "payment_method"]
    value: NonEmptyStr


class AskInfo(_Action):
    type: Literal["ASK_INFO"]
    field: NonEmptyStr


class ShowLastOrder(_Action):
    type: Literal["SHOW_LAST_ORDER"]


class CancelLastOrder(_Action):
    type: Literal["CANCEL_LAST_ORDER"]


class ModifyLastOrder(_Action):
    type: Literal["MODIFY_LAST_ORDER"]


class ConfirmOrder(_Action):
    type: Literal["CONFIRM_ORDER"]


Action = Annotated[
    Union[
        AddToCart,
        RemoveFromCart,
        ClearCart,
        SetState,
        UpdateCustomer,
        AskInfo,
        ShowLastOrder,
        CancelLastOrder,
        ModifyLastOrder,
        ConfirmOrder,
    ],
    Field(discriminator="type"),
]

ACTION_TYPES = {
    "ADD_TO_CART",
    "REMOVE_FROM_CART",
    "CLEAR_CART",
    "SET_STATE",
    "UPDATE_CUSTOMER",
    "ASK_INFO",
    "SHOW_LAST_ORDER",
    "CANCEL_LAST_ORDER",
    "MODIFY_LAST_ORDER",
    "CONFIRM_ORDER",
}

_action_adapter = TypeAdapter(Action)


def parse_action(raw: Any) -> Action | None:
    if not isinstance(raw, dict):
        logger.warning("agent action ignored: not an object (%s)", type(raw).__name__)
        return None
    action_type = raw.get("type")
    if action_type not in ACTION_TYPES:
        logger.warning("agent action ignored: unknown type %r", action_type)
        return None
    try:
        return _action_adapter.validate_python(raw)
    except ValidationError as exc:
        logger.warning("agent action %s rejected: %s", action_type, exc.errors(include_url=False))
        return None


def parse_actions(raw: Any) -> list[Action]:
    if not isinstance(raw, list):
        return []
    actions = [action for action in (parse_action(item) for item in raw) if action is not None]
    if len(actions) < len(raw):
        logger.warning("%s of %s agent action(s) rejected", len(raw) - len(actions), len(raw))
    return actions


class AgentResponse(BaseModel):
    message: str = ""
    actions: List[Action] = Field(default_factory=list)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "AgentResponse":
        message = payload.get("message")
        if not isinstance(message, str):
            message = payload.get("text") if isinstance(payload.get("text"), str) else ""
        return cls(message=message.strip(), actions=parse_actions(payload.get("actions")))
