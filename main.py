import logging
from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from config import get_settings
from database import get_db
from errors import Forbidden, NotFound, UnsupportedCycleType
from models import Budget, BudgetCycle, Category, Expense, Invitation, MemberRole
from schemas import (
    BudgetIn,
    BudgetUpdateIn,
    CategoryIn,
    CategoryUpdateIn,
    ExpenseIn,
    ExpenseUpdateIn,
    InvitationIn,
    SnapshotCategoryIn,
)
from services import (
    WRITE_ROLES,
    BudgetService,
    CategoryService,
    CycleService,
    CycleView,
    ExpenseService,
    InvitationService,
    MembershipService,
    SnapshotCycleView,
    SnapshotService,
)

logging.basicConfig(level=get_settings().log_level.upper())
logger = logging.getLogger(__name__)


def _load_app_version() -> str:
    try:
        import tomllib
    except Exception:
        return "unknown"
    try:
        with open("pyproject.toml", "rb") as f:
            data = tomllib.load(f)
        return str(data.get("project", {}).get("version", "unknown"))
    except Exception:
        return "unknown"


APP_VERSION = _load_app_version()

app = FastAPI(title="Household Budgets", version=APP_VERSION)


@app.exception_handler(UnsupportedCycleType)
async def unsupported_cycle_type_handler(request: Request, exc: UnsupportedCycleType):
    logger.error(f"unsupported_cycle_type: path={request.url.path} detail={exc}")
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


def http_error(exc: ValueError) -> HTTPException:
    if isinstance(exc, NotFound):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, Forbidden):
        return HTTPException(status_code=403, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


def current_user_id(request: Request) -> int:
    # Set by the authenticating proxy in front of this service.
    raw = request.headers.get("x-user-id")
    if not raw:
        raise HTTPException(status_code=401, detail="Unauthorized")
    try:
        return int(raw)
    except ValueError as exc:
        raise HTTPException(status_code=401, detail="Unauthorized") from exc


def require_member(
    db: Session,
    budget_id: int,
    user_id: int,
    roles: Optional[tuple[MemberRole, ...]] = None,
) -> None:
    try:
        MembershipService(db).require(budget_id, user_id, roles)
    except ValueError as exc:
        raise http_error(exc) from exc


def cycle_query_from_request(request: Request) -> tuple[Optional[int], Optional[date]]:
    cycle_param = request.query_params.get("cycle_id")
    date_param = request.query_params.get("date")
    if cycle_param and date_param:
        raise HTTPException(
            status_code=400, detail="Provide either cycle_id or date, not both"
        )
    try:
        cycle_id = int(cycle_param) if cycle_param else None
        on_date = date.fromisoformat(date_param) if date_param else None
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return cycle_id, on_date


def optional_date_param(request: Request, name: str) -> Optional[date]:
    value = request.query_params.get(name)
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def budget_payload(budget: Budget) -> dict[str, object]:
    return {
        "id": budget.id,
        "name": budget.name,
        "total_amount_cents": budget.total_amount_cents,
        "currency": budget.currency,
        "locale": budget.locale,
        "cycle_type": budget.cycle_type.value,
        "cycle_start_day": budget.cycle_start_day,
        "custom_cycle_days": budget.custom_cycle_days,
        "anchor_date": budget.anchor_date.isoformat() if budget.anchor_date else None,
    }


def category_payload(category: Category) -> dict[str, object]:
    return {
        "id": category.id,
        "name": category.name,
        "description": category.description,
        "icon": category.icon,
        "color": category.color,
        "allocation_method": category.allocation_method.value,
        "allocation_value": category.allocation_value,
        "sort_order": category.sort_order,
    }


def expense_payload(expense: Expense) -> dict[str, object]:
    return {
        "id": expense.id,
        "amount_cents": expense.amount_cents,
        "date": expense.date.isoformat(),
        "description": expense.description,
        "splits": [
            {
                "category_id": split.category_id,
                "allocation_method": split.allocation_method.value,
                "allocation_value": split.allocation_value,
                "calculated_amount": split.calculated_amount,
            }
            for split in expense.splits
        ],
    }


def invitation_payload(invitation: Invitation) -> dict[str, object]:
    return {
        "id": invitation.id,
        "email": invitation.email,
        "role": invitation.role.value,
        "status": invitation.status.value,
        "expires_at": invitation.expires_at.isoformat(),
        "sent_by_id": invitation.sent_by_id,
        "created_at": invitation.created_at.isoformat(),
    }


def cycle_payload(cycle: BudgetCycle) -> dict[str, object]:
    return {
        "id": cycle.id,
        "start_date": cycle.start_date.isoformat(),
        "end_date": cycle.end_date.isoformat(),
        "has_snapshot": cycle.snapshot is not None,
        "created_at": cycle.created_at.isoformat(),
    }


def cycle_view_payload(view: CycleView) -> dict[str, object]:
    payload: dict[str, object] = {
        "cycle": cycle_payload(view.cycle),
        "category_totals": view.category_totals,
        "total_spent": view.total_spent,
        "allocations": view.allocations,
        "is_current_cycle": view.is_current_cycle,
    }
    if isinstance(view, SnapshotCycleView):
        payload["snapshot"] = view.snapshot.to_json()
    return payload


@app.get("/api/budgets")
def list_budgets(
    db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    budgets = BudgetService(db, user_id).list_for_user()
    return {"items": [budget_payload(b) for b in budgets]}


@app.post("/api/budgets", status_code=201)
def create_budget(
    data: BudgetIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    budget = BudgetService(db, user_id).create(data)
    return budget_payload(budget)


@app.get("/api/budgets/{budget_id}")
def get_budget(
    budget_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    require_member(db, budget_id, user_id)
    try:
        budget = BudgetService(db, user_id).get(budget_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return budget_payload(budget)


@app.patch("/api/budgets/{budget_id}")
def update_budget(
    budget_id: int,
    data: BudgetUpdateIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    require_member(db, budget_id, user_id, (MemberRole.owner,))
    try:
        budget = BudgetService(db, user_id).update(budget_id, data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return budget_payload(budget)


@app.delete("/api/budgets/{budget_id}")
def delete_budget(
    budget_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    require_member(db, budget_id, user_id, (MemberRole.owner,))
    try:
        BudgetService(db, user_id).delete(budget_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"message": "Budget deleted"}


@app.get("/api/budgets/{budget_id}/categories")
def list_categories(
    budget_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    require_member(db, budget_id, user_id)
    categories = CategoryService(db).list_all(budget_id)
    return {"items": [category_payload(c) for c in categories]}


@app.post("/api/budgets/{budget_id}/categories", status_code=201)
def create_category(
    budget_id: int,
    data: CategoryIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    require_member(db, budget_id, user_id, WRITE_ROLES)
    try:
        category = CategoryService(db).create(budget_id, data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return category_payload(category)


@app.patch("/api/budgets/{budget_id}/categories/{category_id}")
def update_category(
    budget_id: int,
    category_id: int,
    data: CategoryUpdateIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    require_member(db, budget_id, user_id, WRITE_ROLES)
    try:
        category = CategoryService(db).update(budget_id, category_id, data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return category_payload(category)


@app.delete("/api/budgets/{budget_id}/categories/{category_id}")
def delete_category(
    budget_id: int,
    category_id: int,
    reassign_to: Optional[int] = None,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    require_member(db, budget_id, user_id, (MemberRole.owner,))
    try:
        CategoryService(db).delete(budget_id, category_id, reassign_to=reassign_to)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"message": "Category deleted"}


@app.get("/api/budgets/{budget_id}/expenses")
def list_expenses(
    budget_id: int,
    request: Request,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    require_member(db, budget_id, user_id)
    start = optional_date_param(request, "start")
    end = optional_date_param(request, "end")
    expenses = ExpenseService(db, user_id).list(budget_id, start, end)
    return {"items": [expense_payload(e) for e in expenses]}


@app.post("/api/budgets/{budget_id}/expenses", status_code=201)
def create_expense(
    budget_id: int,
    data: ExpenseIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    require_member(db, budget_id, user_id, WRITE_ROLES)
    try:
        expense = ExpenseService(db, user_id).create(budget_id, data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return expense_payload(expense)


@app.patch("/api/budgets/{budget_id}/expenses/{expense_id}")
def update_expense(
    budget_id: int,
    expense_id: int,
    data: ExpenseUpdateIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    require_member(db, budget_id, user_id, WRITE_ROLES)
    try:
        expense = ExpenseService(db, user_id).update(budget_id, expense_id, data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return expense_payload(expense)


@app.delete("/api/budgets/{budget_id}/expenses/{expense_id}")
def delete_expense(
    budget_id: int,
    expense_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    require_member(db, budget_id, user_id, WRITE_ROLES)
    try:
        ExpenseService(db, user_id).soft_delete(budget_id, expense_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"message": "Expense deleted"}


@app.get("/api/budgets/{budget_id}/cycles")
def get_cycle(
    budget_id: int,
    request: Request,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    require_member(db, budget_id, user_id)
    cycle_id, on_date = cycle_query_from_request(request)
    try:
        view = CycleService(db).resolve(budget_id, cycle_id=cycle_id, on_date=on_date)
    except ValueError as exc:
        raise http_error(exc) from exc
    return cycle_view_payload(view)


@app.get("/api/budgets/{budget_id}/cycles/list")
def list_cycles(
    budget_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    require_member(db, budget_id, user_id)
    cycles = CycleService(db).list_cycles(budget_id)
    return {"cycles": [cycle_payload(c) for c in cycles]}


@app.post("/api/budgets/{budget_id}/cycles/{cycle_id}/categories", status_code=201)
def add_snapshot_category(
    budget_id: int,
    cycle_id: int,
    data: SnapshotCategoryIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    require_member(db, budget_id, user_id, WRITE_ROLES)
    try:
        cycle = CycleService(db).get(budget_id, cycle_id)
        category = SnapshotService(db).append_category(cycle, data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"category": category.model_dump(mode="json")}


@app.get("/api/budgets/{budget_id}/invitations")
def list_invitations(
    budget_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    require_member(db, budget_id, user_id, (MemberRole.owner,))
    try:
        invitations = InvitationService(db, user_id).list_for_budget(budget_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"items": [invitation_payload(i) for i in invitations]}


@app.post("/api/budgets/{budget_id}/invitations", status_code=201)
def create_invitation(
    budget_id: int,
    data: InvitationIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    require_member(db, budget_id, user_id, (MemberRole.owner,))
    try:
        invitation, token = InvitationService(db, user_id).create(budget_id, data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {
        "id": invitation.id,
        "email": invitation.email,
        "role": invitation.role.value,
        "expires_at": invitation.expires_at.isoformat(),
        "token": token,
    }


@app.post("/api/invitations/{token}/accept")
def accept_invitation(
    token: str,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        member = InvitationService(db, user_id).accept(token)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"message": "Invitation accepted", "budget_id": member.budget_id}


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
