"""API endpoints for recurring transaction rules."""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.orm import Session

from recurring_engine.app.core.database import get_db
from recurring_engine.app.models.recurring import FrequencyType, RuleType
from recurring_engine.app.services.errors import (
    AmountComputationError,
    InvalidFrequencyConfig,
    RuleBusy,
    RuleNotFound,
)
from recurring_engine.app.services.recurring import (
    CLEARABLE_FIELDS,
    create_recurring_rule,
    delete_recurring_rule,
    get_recurring_rule,
    list_recurring_rules,
    load_rule,
    preview_occurrences,
    set_rule_active,
    update_recurring_rule,
)

router = APIRouter()

_BAD_REQUEST = (ValueError, InvalidFrequencyConfig, AmountComputationError)


# ─── Schemas ─────────────────────────────────────────────────────────────────


class RecurringRuleCreateIn(BaseModel):
    user_id: UUID
    description: str = Field(..., min_length=1)
    amount: Decimal = Field(..., gt=0)
    rule_type: str
    start_date: date
    frequency: str
    frequency_interval: int = Field(1, ge=1)
    day_of_week: int | None = Field(None, ge=0, le=6)
    day_of_month: int | None = Field(None, ge=1, le=31)
    end_date: date | None = None
    total_occurrences: int | None = Field(None, ge=1)
    is_installment: bool = False
    total_amount: Decimal | None = Field(None, gt=0)
    sub_category_id: UUID | None = None
    goal_id: UUID | None = None
    money_account_id: UUID | None = None
    external_system_id: str | None = None
    notes: str | None = None

    @field_validator("frequency")
    @classmethod
    def valid_frequency(cls, v: str) -> str:
        allowed = {f.value for f in FrequencyType}
        if v not in allowed:
            raise ValueError(f"Frequency must be one of: {', '.join(sorted(allowed))}")
        return v

    @field_validator("rule_type")
    @classmethod
    def valid_rule_type(cls, v: str) -> str:
        allowed = {t.value for t in RuleType}
        if v not in allowed:
            raise ValueError(f"Rule type must be one of: {', '.join(sorted(allowed))}")
        return v


class RecurringRuleUpdateIn(BaseModel):
    user_id: UUID
    description: str | None = None
    amount: Decimal | None = Field(None, gt=0)
    notes: str | None = None
    frequency: str | None = None
    frequency_interval: int | None = Field(None, ge=1)
    day_of_week: int | None = Field(None, ge=0, le=6)
    day_of_month: int | None = Field(None, ge=1, le=31)
    next_due_date: date | None = None
    end_date: date | None = None
    total_occurrences: int | None = Field(None, ge=1)
    sub_category_id: UUID | None = None
    money_account_id: UUID | None = None
    goal_id: UUID | None = None


class StatusUpdateIn(BaseModel):
    user_id: UUID
    is_active: bool


# ─── Helpers ─────────────────────────────────────────────────────────────────


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _raise_http(e: Exception) -> None:
    if isinstance(e, RuleNotFound):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, RuleBusy):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


# ─── Endpoints ───────────────────────────────────────────────────────────────


@router.get("")
def list_rules(
    user_id: UUID | None = None,
    is_installment: bool | None = None,
    db: Session = Depends(get_db),
) -> list[dict]:
    return list_recurring_rules(db, user_id=user_id, is_installment=is_installment)


@router.get("/{rule_id}")
def get_rule(rule_id: UUID, db: Session = Depends(get_db)) -> dict:
    try:
        return get_recurring_rule(db, rule_id)
    except RuleNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.get("/{rule_id}/preview")
def preview_rule(
    rule_id: UUID,
    count: int = Query(12, ge=1, le=366),
    db: Session = Depends(get_db),
) -> list[dict]:
    try:
        return preview_occurrences(load_rule(db, rule_id), count)
    except RuleNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except (AmountComputationError, InvalidFrequencyConfig) as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.post("", status_code=status.HTTP_201_CREATED)
def create_rule(body: RecurringRuleCreateIn, db: Session = Depends(get_db)) -> dict:
    try:
        rule = create_recurring_rule(db, **body.model_dump())
        db.commit()
        return get_recurring_rule(db, rule.id)
    except _BAD_REQUEST as e:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.put("/{rule_id}")
def update_rule(
    rule_id: UUID,
    body: RecurringRuleUpdateIn,
    db: Session = Depends(get_db),
) -> dict:
    # An explicit null clears the field; an omitted one leaves it alone
    clear = [
        name for name in body.model_fields_set
        if name in CLEARABLE_FIELDS and getattr(body, name) is None
    ]
    try:
        update_recurring_rule(
            db, rule_id=rule_id, now=_now(), clear=clear, **body.model_dump(),
        )
        db.commit()
        return get_recurring_rule(db, rule_id)
    except (RuleNotFound, RuleBusy, *_BAD_REQUEST) as e:
        db.rollback()
        _raise_http(e)


@router.patch("/{rule_id}/status")
def patch_status(
    rule_id: UUID,
    body: StatusUpdateIn,
    db: Session = Depends(get_db),
) -> dict:
    try:
        set_rule_active(
            db,
            rule_id=rule_id,
            user_id=body.user_id,
            active=body.is_active,
            now=_now(),
        )
        db.commit()
        return get_recurring_rule(db, rule_id)
    except (RuleNotFound, RuleBusy, ValueError) as e:
        db.rollback()
        _raise_http(e)


@router.delete("/{rule_id}")
def delete_rule(
    rule_id: UUID,
    user_id: UUID,
    db: Session = Depends(get_db),
) -> dict:
    try:
        outcome = delete_recurring_rule(db, rule_id=rule_id, user_id=user_id, now=_now())
        db.commit()
        return {"id": str(rule_id), "result": outcome}
    except (RuleNotFound, RuleBusy) as e:
        db.rollback()
        _raise_http(e)
