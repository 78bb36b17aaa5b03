from datetime import date, datetime

from fastapi import APIRouter, Depends

from ...services.analytics import AnalyticsService
from ..deps import get_analytics_service

router = APIRouter(prefix="/analytics/{company_id}", tags=["analytics"])


@router.get("/summary")
def dashboard_summary(
    company_id: str,
    from_date: datetime | date | None = None,
    to_date: datetime | date | None = None,
    analytics: AnalyticsService = Depends(get_analytics_service),
):
    return analytics.get_dashboard_summary(company_id, from_date, to_date)


@router.get("/departments")
def department_wise(
    company_id: str,
    from_date: datetime | date | None = None,
    to_date: datetime | date | None = None,
    analytics: AnalyticsService = Depends(get_analytics_service),
):
    return analytics.get_department_wise_expenses(company_id, from_date, to_date)


@router.get("/projects")
def project_wise(
    company_id: str,
    from_date: datetime | date | None = None,
    to_date: datetime | date | None = None,
    analytics: AnalyticsService = Depends(get_analytics_service),
):
    return analytics.get_project_wise_expenses(company_id, from_date, to_date)


@router.get("/cost-centres")
def cost_centre_wise(
    company_id: str,
    from_date: datetime | date | None = None,
    to_date: datetime | date | None = None,
    analytics: AnalyticsService = Depends(get_analytics_service),
):
    return analytics.get_cost_centre_wise_expenses(company_id, from_date, to_date)


@router.get("/categories")
def category_wise(
    company_id: str,
    from_date: datetime | date | None = None,
    to_date: datetime | date | None = None,
    analytics: AnalyticsService = Depends(get_analytics_service),
):
    return analytics.get_category_wise_expenses(company_id, from_date, to_date)


@router.get("/trends")
def monthly_trends(
    company_id: str,
    months: int = 12,
    analytics: AnalyticsService = Depends(get_analytics_service),
):
    return analytics.get_monthly_trends(company_id, months)
