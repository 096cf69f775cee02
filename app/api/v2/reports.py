"""
Reports Endpoints

- Financial report (KPIs, revenue series, technician performance, alerts)
- Operational report (equipment counts, repair times, overdue work)
- Technician payments (advances and salaries) and the distribution calculator
"""

from fastapi import APIRouter
from datetime import date
from typing import Optional

from app.api.deps import DbSession, SessionFactory
from app.models.equipment import EquipmentStatus, EquipmentType
from app.schemas.reports import (
    DistributionCommitResponse,
    DistributionRequest,
    DistributionResponse,
    FinancialReport,
    OperationalReport,
    TechnicianPaymentsReport,
)
from app.security.rbac import CurrentActor
from app.services import technician_payments as distribution
from app.services.expenses import technician_payments_report
from app.services.financial_reports import compute_financial_report
from app.services.operational_reports import compute_operational_report

router = APIRouter()


@router.get("/financial", response_model=FinancialReport)
async def get_financial_report(
    session_factory: SessionFactory,
    actor: CurrentActor,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    technician_id: Optional[int] = None,
):
    """Financial report for the range (defaults to the current month)."""
    return await compute_financial_report(
        session_factory, actor, start_date=start_date, end_date=end_date, technician_id=technician_id
    )


@router.get("/operational", response_model=OperationalReport)
async def get_operational_report(
    session_factory: SessionFactory,
    actor: CurrentActor,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    technician_id: Optional[int] = None,
    type: Optional[EquipmentType] = None,
    status: Optional[EquipmentStatus] = None,
):
    return await compute_operational_report(
        session_factory,
        actor,
        start_date=start_date,
        end_date=end_date,
        technician_id=technician_id,
        type=type,
        status=status,
    )


@router.get("/technician-payments", response_model=TechnicianPaymentsReport)
async def get_technician_payments(
    db: DbSession,
    actor: CurrentActor,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    technician_id: Optional[int] = None,
):
    """Advances and salaries paid to technicians."""
    return await technician_payments_report(
        db, actor, start_date=start_date, end_date=end_date, technician_id=technician_id
    )


@router.post("/technician-payments/calculate", response_model=DistributionResponse)
async def calculate_technician_payments(
    data: DistributionRequest, session_factory: SessionFactory, actor: CurrentActor
):
    """Preview the technician payment distribution without posting anything."""
    result, _ = await distribution.prepare_distribution(
        session_factory,
        actor,
        data.period_income,
        data.period_expenses,
        start_date=data.start_date,
        end_date=data.end_date,
    )
    return DistributionResponse.from_distribution(result)


@router.post("/technician-payments/register", response_model=DistributionCommitResponse)
async def register_technician_payments(
    data: DistributionRequest, session_factory: SessionFactory, actor: CurrentActor
):
    """Calculate the distribution and post one SALARY expense per technician owed money."""
    result, period = await distribution.prepare_distribution(
        session_factory,
        actor,
        data.period_income,
        data.period_expenses,
        start_date=data.start_date,
        end_date=data.end_date,
    )
    postings = await distribution.commit_distribution(
        session_factory, actor, result, period, method=data.payment_method
    )
    posted = sum(1 for p in postings if p.success)
    return DistributionCommitResponse(
        distribution=DistributionResponse.from_distribution(result),
        posted=posted,
        failed=len(postings) - posted,
        results=postings,
    )
