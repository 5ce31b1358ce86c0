from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from kaimono.db import get_db
from kaimono.models.user import User
from kaimono.security import require_admin
from kaimono.services.sales_service import SalesService

router = APIRouter(prefix="/api/sales", tags=["sales"])


@router.get("/daily", summary="Sales per day")
def daily_sales(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    product_id: Optional[int] = None,
    category_id: Optional[int] = None,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    rows = SalesService(db).daily(start_date, end_date, product_id, category_id)
    return {"items": rows}


@router.get("/monthly", summary="Sales per month")
def monthly_sales(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    product_id: Optional[int] = None,
    category_id: Optional[int] = None,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    rows = SalesService(db).monthly(start_date, end_date, product_id, category_id)
    return {"items": rows}


@router.get("/products", summary="Sales per product")
def product_sales(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    category_id: Optional[int] = None,
    limit: int = Query(50, ge=1, le=500),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return {"items": SalesService(db).by_product(start_date, end_date, category_id, limit)}


@router.get("/categories", summary="Sales per category")
def category_sales(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return {"items": SalesService(db).by_category(start_date, end_date)}
