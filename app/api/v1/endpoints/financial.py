from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session, joinedload
from sqlalchemy import or_
from typing import Optional
from datetime import datetime
from app.core.database import get_db
from app.core.security import get_current_user
from app.models.models import (
    Appointment, Customer, Establishment, FinancialCategory, FinancialTransaction, Professional, User
)
from app.schemas.schemas import (
    FinancialCategoryCreate, FinancialCategoryUpdate, FinancialCategoryResponse,
    FinancialTransactionCreate, FinancialTransactionUpdate, FinancialTransactionResponse
)
from app.utils.charts import percentage
from app.api.v1.endpoints.activity_logs import create_activity_log

router = APIRouter()

# Models a transaction may point at, keyed by the request field
TRANSACTION_REFERENCES = {
    "establishment_id": (Establishment, "Establishment not found"),
    "appointment_id": (Appointment, "Appointment not found"),
    "professional_id": (Professional, "Professional not found"),
    "customer_id": (Customer, "Customer not found"),
}


def _get_category(db: Session, category_id: int, user: User) -> FinancialCategory:
    category = db.query(FinancialCategory).filter(
        FinancialCategory.id == category_id,
        FinancialCategory.user_id == user.id
    ).first()
    if not category:
        raise HTTPException(status_code=404, detail="Category not found")
    return category


def _get_transaction(db: Session, transaction_id: int, user: User) -> FinancialTransaction:
    transaction = db.query(FinancialTransaction).filter(
        FinancialTransaction.id == transaction_id,
        FinancialTransaction.user_id == user.id
    ).first()
    if not transaction:
        raise HTTPException(status_code=404, detail="Transaction not found")
    return transaction


def _check_references(db: Session, data: dict, user: User):
    for field, (model, message) in TRANSACTION_REFERENCES.items():
        value = data.get(field)
        if value is None:
            continue
        exists = db.query(model.id).filter(model.id == value, model.user_id == user.id).first()
        if not exists:
            raise HTTPException(status_code=404, detail=message)


def _is_descendant(db: Session, category: FinancialCategory, ancestor_id: int) -> bool:
    """Walk up the parent chain of `category` looking for `ancestor_id`"""
    seen = set()
    current = category
    while current is not None and current.id not in seen:
        if current.id == ancestor_id:
            return True
        seen.add(current.id)
        if current.parent_id is None:
            break
        current = db.query(FinancialCategory).filter(FinancialCategory.id == current.parent_id).first()
    return False


# ==================== CATEGORIES ====================

@router.get("/categories")
def list_categories(
    type: Optional[str] = None,
    parent_id: Optional[int] = None,
    search: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    query = db.query(FinancialCategory).filter(FinancialCategory.user_id == current_user.id)
    if type:
        query = query.filter(FinancialCategory.type == type)
    if parent_id is not None:
        query = query.filter(FinancialCategory.parent_id == parent_id)
    if search:
        query = query.filter(FinancialCategory.name.ilike(f"%{search}%"))

    categories = query.order_by(FinancialCategory.name.asc()).all()
    return {
        "items": [FinancialCategoryResponse.model_validate(c) for c in categories],
        "total": len(categories)
    }


@router.post("/categories", response_model=FinancialCategoryResponse, status_code=status.HTTP_201_CREATED)
def create_category(
    data: FinancialCategoryCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    if data.parent_id is not None:
        parent = _get_category(db, data.parent_id, current_user)
        if parent.type != data.type:
            raise HTTPException(status_code=400, detail="Parent category must have the same type")

    category = FinancialCategory(user_id=current_user.id, **data.model_dump())
    db.add(category)
    db.commit()
    db.refresh(category)

    create_activity_log(
        db,
        user_id=current_user.id,
        action="created",
        entity_type="financial_category",
        entity_id=category.id,
        description=f"Created {category.type.lower()} category {category.name}",
        request=request
    )

    return category


@router.put("/categories/{category_id}", response_model=FinancialCategoryResponse)
def update_category(
    category_id: int,
    data: FinancialCategoryUpdate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    category = _get_category(db, category_id, current_user)
    update_data = data.model_dump(exclude_unset=True)

    parent_id = update_data.get("parent_id")
    if parent_id is not None:
        if parent_id == category.id:
            raise HTTPException(status_code=400, detail="A category cannot be its own parent")
        parent = _get_category(db, parent_id, current_user)
        if parent.type != category.type:
            raise HTTPException(status_code=400, detail="Parent category must have the same type")
        if _is_descendant(db, parent, category.id):
            raise HTTPException(status_code=400, detail="A category cannot be moved under one of its subcategories")

    for field, value in update_data.items():
        setattr(category, field, value)

    db.commit()
    db.refresh(category)

    create_activity_log(
        db,
        user_id=current_user.id,
        action="updated",
        entity_type="financial_category",
        entity_id=category.id,
        description=f"Updated category {category.name}",
        request=request
    )

    return category


@router.delete("/categories/{category_id}")
def delete_category(
    category_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    category = _get_category(db, category_id, current_user)

    in_use = db.query(FinancialTransaction.id).filter(FinancialTransaction.category_id == category.id).first()
    if in_use:
        raise HTTPException(status_code=400, detail="Cannot delete a category that has transactions")

    db.query(FinancialCategory).filter(FinancialCategory.parent_id == category.id).update(
        {FinancialCategory.parent_id: None}, synchronize_session=False
    )
    name = category.name
    db.delete(category)
    db.commit()

    create_activity_log(
        db,
        user_id=current_user.id,
        action="deleted",
        entity_type="financial_category",
        entity_id=category_id,
        description=f"Deleted category {name}",
        request=request
    )

    return {"message": "Category deleted successfully"}


# ==================== TRANSACTIONS ====================

@router.get("/transactions")
def list_transactions(
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    type: Optional[str] = None,
    status_filter: Optional[str] = Query(None, alias="status"),
    category_id: Optional[int] = None,
    payment_method: Optional[str] = None,
    establishment_id: Optional[int] = None,
    search: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    query = db.query(FinancialTransaction).join(FinancialCategory).filter(
        FinancialTransaction.user_id == current_user.id
    )
    if start_date:
        query = query.filter(FinancialTransaction.date >= start_date)
    if end_date:
        query = query.filter(FinancialTransaction.date <= end_date)
    if type:
        query = query.filter(FinancialTransaction.type == type)
    if status_filter:
        query = query.filter(FinancialTransaction.status == status_filter)
    if category_id is not None:
        query = query.filter(FinancialTransaction.category_id == category_id)
    if payment_method:
        query = query.filter(FinancialTransaction.payment_method == payment_method)
    if establishment_id is not None:
        query = query.filter(FinancialTransaction.establishment_id == establishment_id)
    if search:
        query = query.filter(
            or_(
                FinancialTransaction.description.ilike(f"%{search}%"),
                FinancialCategory.name.ilike(f"%{search}%")
            )
        )

    total = query.count()
    transactions = query.order_by(FinancialTransaction.date.desc(), FinancialTransaction.id.desc()).offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [FinancialTransactionResponse.model_validate(t) for t in transactions],
        "total": total,
        "page": page,
        "per_page": per_page,
        "total_pages": (total + per_page - 1) // per_page
    }


@router.post("/transactions", response_model=FinancialTransactionResponse, status_code=status.HTTP_201_CREATED)
def create_transaction(
    data: FinancialTransactionCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    category = _get_category(db, data.category_id, current_user)
    if category.type != data.type:
        raise HTTPException(status_code=400, detail="Category type does not match transaction type")

    payload = data.model_dump()
    _check_references(db, payload, current_user)

    transaction = FinancialTransaction(user_id=current_user.id, **payload)
    db.add(transaction)
    db.commit()
    db.refresh(transaction)

    create_activity_log(
        db,
        user_id=current_user.id,
        establishment_id=transaction.establishment_id,
        action="created",
        entity_type="financial_transaction",
        entity_id=transaction.id,
        description=f"Recorded {transaction.type.lower()} of {transaction.amount} cents",
        request=request
    )

    return transaction


@router.get("/transactions/{transaction_id}", response_model=FinancialTransactionResponse)
def get_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return _get_transaction(db, transaction_id, current_user)


@router.put("/transactions/{transaction_id}", response_model=FinancialTransactionResponse)
def update_transaction(
    transaction_id: int,
    data: FinancialTransactionUpdate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    transaction = _get_transaction(db, transaction_id, current_user)
    update_data = data.model_dump(exclude_unset=True)

    category_id = update_data.get("category_id", transaction.category_id)
    new_type = update_data.get("type", transaction.type)
    category = _get_category(db, category_id, current_user)
    if category.type != new_type:
        raise HTTPException(status_code=400, detail="Category type does not match transaction type")

    for field, value in update_data.items():
        setattr(transaction, field, value)

    db.commit()
    db.refresh(transaction)

    create_activity_log(
        db,
        user_id=current_user.id,
        establishment_id=transaction.establishment_id,
        action="updated",
        entity_type="financial_transaction",
        entity_id=transaction.id,
        description=f"Updated transaction #{transaction.id}",
        request=request,
        metadata={"fields": list(update_data.keys())}
    )

    return transaction


@router.delete("/transactions/{transaction_id}")
def delete_transaction(
    transaction_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    transaction = _get_transaction(db, transaction_id, current_user)

    db.delete(transaction)
    db.commit()

    create_activity_log(
        db,
        user_id=current_user.id,
        action="deleted",
        entity_type="financial_transaction",
        entity_id=transaction_id,
        description=f"Deleted transaction #{transaction_id}",
        request=request
    )

    return {"message": "Transaction deleted successfully"}


# ==================== SUMMARY ====================

@router.get("/summary")
def get_financial_summary(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    establishment_id: Optional[int] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Income and expense totals of completed and pending transactions.
    Cancelled transactions are ignored; pending amounts are also reported
    on their own.
    """
    query = db.query(FinancialTransaction).options(joinedload(FinancialTransaction.category)).filter(
        FinancialTransaction.user_id == current_user.id,
        FinancialTransaction.status.in_(["COMPLETED", "PENDING"])
    )
    if start_date:
        query = query.filter(FinancialTransaction.date >= start_date)
    if end_date:
        query = query.filter(FinancialTransaction.date <= end_date)
    if establishment_id is not None:
        query = query.filter(FinancialTransaction.establishment_id == establishment_id)

    totals = {"INCOME": 0, "EXPENSE": 0}
    pending = {"INCOME": 0, "EXPENSE": 0}
    by_category = {"INCOME": {}, "EXPENSE": {}}
    daily = {}

    for transaction in query.all():
        kind = transaction.type
        amount = transaction.amount
        totals[kind] += amount
        if transaction.status == "PENDING":
            pending[kind] += amount

        entry = by_category[kind].setdefault(transaction.category_id, {
            "category_id": transaction.category_id,
            "category_name": transaction.category.name,
            "amount": 0,
        })
        entry["amount"] += amount

        day = daily.setdefault(transaction.date.date().isoformat(), {"income": 0, "expense": 0})
        day["income" if kind == "INCOME" else "expense"] += amount

    def category_breakdown(kind):
        items = sorted(by_category[kind].values(), key=lambda e: e["amount"], reverse=True)
        for item in items:
            item["percentage"] = percentage(item["amount"], totals[kind])
        return items

    return {
        "total_income": totals["INCOME"],
        "total_expense": totals["EXPENSE"],
        "balance": totals["INCOME"] - totals["EXPENSE"],
        "pending_income": pending["INCOME"],
        "pending_expense": pending["EXPENSE"],
        "revenue_by_category": category_breakdown("INCOME"),
        "expense_by_category": category_breakdown("EXPENSE"),
        "daily_balance": [
            {"date": day, "income": v["income"], "expense": v["expense"], "balance": v["income"] - v["expense"]}
            for day, v in sorted(daily.items())
        ]
    }
