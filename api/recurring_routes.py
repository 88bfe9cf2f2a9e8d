"""
api/recurring_routes.py
-----------------------
HTTP endpoints for recurring payments.
Every response is {"success": bool, "message": str, "data": ...}.
"""

from typing import Any, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from api.deps import get_current_user_id, get_recurring_service
from services.recurring_service import RecurringService


router = APIRouter(prefix="/api/v1/recurring-payments", tags=["recurring-payments"])


# === Request models ===
# Fields are loosely typed; the service validates them and answers 400

class CreateRecurringRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: Any = None
    amount: Any = None
    frequency: Any = "monthly"
    custom_interval: Any = Field(default=1, alias="customInterval")
    start_date: Any = Field(default=None, alias="startDate")
    end_date: Any = Field(default=None, alias="endDate")
    category: Any = None
    description: Any = None


class UpdateDateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    new_start_date: Optional[str] = Field(default=None, alias="newStartDate")


class UndoRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    expense_id: Optional[int] = Field(default=None, alias="expenseId")


# === Helpers ===

def _serialize(value: Any) -> Any:
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, list):
        return [_serialize(v) for v in value]
    if isinstance(value, dict):
        return {k: _serialize(v) for k, v in value.items()}
    return value


def _respond(result: dict, status_code: int = 200) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "success": result["success"],
            "message": result["message"],
            "data": _serialize(result.get("data")),
        },
    )


# === Endpoints ===

@router.post("/")
def create_recurring_payment(
    req: CreateRecurringRequest,
    user_id: int = Depends(get_current_user_id),
    service: RecurringService = Depends(get_recurring_service),
):
    """Create a recurring payment"""
    result = service.create_payment(
        user_id=user_id,
        name=req.name,
        amount=req.amount,
        frequency=req.frequency,
        custom_interval=req.custom_interval,
        start_date=req.start_date,
        end_date=req.end_date,
        category=req.category,
        description=req.description,
    )
    return _respond(result, status_code=201)


@router.get("/")
def list_recurring_payments(
    user_id: int = Depends(get_current_user_id),
    service: RecurringService = Depends(get_recurring_service),
):
    """List the caller's recurring payments, newest start date first"""
    return _respond(service.list_payments(user_id))


@router.get("/upcoming")
def list_upcoming_payments(
    user_id: int = Depends(get_current_user_id),
    service: RecurringService = Depends(get_recurring_service),
):
    """Payments due within the lookahead window"""
    return _respond(service.list_upcoming(user_id))


@router.put("/{payment_id}/update-date")
def update_start_date(
    payment_id: int,
    req: UpdateDateRequest,
    user_id: int = Depends(get_current_user_id),
    service: RecurringService = Depends(get_recurring_service),
):
    """Postpone or prepone a schedule"""
    return _respond(service.update_start_date(payment_id, user_id, req.new_start_date))


@router.put("/{payment_id}/pause")
def pause_recurring_payment(
    payment_id: int,
    user_id: int = Depends(get_current_user_id),
    service: RecurringService = Depends(get_recurring_service),
):
    return _respond(service.pause_payment(payment_id, user_id))


@router.put("/{payment_id}/resume")
def resume_recurring_payment(
    payment_id: int,
    user_id: int = Depends(get_current_user_id),
    service: RecurringService = Depends(get_recurring_service),
):
    return _respond(service.resume_payment(payment_id, user_id))


@router.delete("/{payment_id}")
def delete_recurring_payment(
    payment_id: int,
    user_id: int = Depends(get_current_user_id),
    service: RecurringService = Depends(get_recurring_service),
):
    return _respond(service.delete_payment(payment_id, user_id))


@router.post("/undo")
def undo_generated_expense(
    req: UndoRequest,
    user_id: int = Depends(get_current_user_id),
    service: RecurringService = Depends(get_recurring_service),
):
    """Delete a generated expense and roll its payment back one occurrence"""
    if req.expense_id is None:
        return JSONResponse(status_code=400, content={"success": False, "message": "Expense ID required"})
    return _respond(service.undo_expense(req.expense_id, user_id))
