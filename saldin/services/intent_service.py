import json
import re
import time
import unicodedata
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from saldin.logging_config import get_logger
from saldin.schemas.intent import (
    BalanceQueryIntent,
    Direction,
    FinancialIntent,
    IncompleteIntent,
    RawIntentPayload,
    StatementQueryIntent,
    TransactionIntent,
)
from saldin.services.llm import LLMProvider
from saldin.services.money import parse_positive_amount

logger = get_logger("intent_service")

_PROMPTS_PATH = Path(__file__).with_name("prompts.yaml")

EXPENSE_TYPES = {"gasto", "despesa", "expense"}
INCOME_TYPES = {"receita", "income"}
BALANCE_TYPES = {"consulta_saldo", "saldo"}
STATEMENT_TYPES = {"consulta_extrato", "extrato"}

_MARKDOWN_CHARS = re.compile(r"[*_~`]")
_WHITESPACE = re.compile(r"\s+")


def normalize_for_matching(text: str | None) -> str:
    """Casefold, drop diacritics and emphasis markers, collapse whitespace."""
    if not text:
        return ""
    normalized = unicodedata.normalize("NFKD", text)
    normalized = "".join(ch for ch in normalized if not unicodedata.combining(ch))
    normalized = _MARKDOWN_CHARS.sub("", normalized).casefold()
    return _WHITESPACE.sub(" ", normalized).strip()


@lru_cache
def load_prompts() -> dict:
    with _PROMPTS_PATH.open("r", encoding="utf-8") as handle:
        return yaml.safe_load(handle) or {}


def get_prompt(name: str) -> str:
    prompt = load_prompts().get(name)
    if not prompt:
        raise KeyError(f"Prompt '{name}' not found in {_PROMPTS_PATH.name}")
    return prompt


def parse_intent(raw: Any) -> FinancialIntent:
    """
    Validate a loosely-typed service answer into a FinancialIntent.

    Anything that does not describe a usable transaction or query (unknown type,
    missing or non-positive amount, empty description, explicit "incompleto")
    becomes IncompleteIntent.
    """
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError:
            return IncompleteIntent(reason="invalid_json")
    if not isinstance(raw, dict):
        return IncompleteIntent(reason="invalid_payload")

    try:
        payload = RawIntentPayload.model_validate(raw)
    except ValidationError:
        return IncompleteIntent(reason="invalid_payload")

    kind = (payload.tipo or "").strip().lower()
    status = (payload.status or "ok").strip().lower()

    if kind in BALANCE_TYPES:
        return BalanceQueryIntent()
    if kind in STATEMENT_TYPES:
        return StatementQueryIntent()
    if status != "ok":
        return IncompleteIntent(reason="marked_incomplete")

    if kind in EXPENSE_TYPES:
        direction = Direction.EXPENSE
    elif kind in INCOME_TYPES:
        direction = Direction.INCOME
    else:
        return IncompleteIntent(reason="unknown_type")

    amount = parse_positive_amount(payload.valor)
    if amount is None:
        return IncompleteIntent(reason="invalid_amount")

    try:
        return TransactionIntent(
            direction=direction,
            amount=amount,
            description=payload.descricao or "",
            suggested_category=(payload.categoria_sugerida or "").strip() or None,
            payment_method=(payload.metodo_pagamento or "").strip() or None,
        )
    except ValidationError:
        return IncompleteIntent(reason="missing_description")


def classify_text(llm: LLMProvider, text: str, *, model: str | None = None) -> FinancialIntent:
    """Classify free text into a FinancialIntent. LLMError propagates to the caller."""
    messages = [
        {"role": "system", "content": get_prompt("text_classifier")},
        {"role": "user", "content": text},
    ]

    llm_start = time.monotonic()
    response = llm.generate(messages, model=model, temperature=0.0, max_tokens=300, json_mode=True)
    intent = parse_intent(response.content)

    logger.info(
        "Intent classified",
        extra={
            "context": {
                "stage": "intent_llm_ms",
                "elapsed_ms": round((time.monotonic() - llm_start) * 1000, 2),
                "model_name": response.model,
                "kind": intent.kind,
            }
        },
    )
    return intent
