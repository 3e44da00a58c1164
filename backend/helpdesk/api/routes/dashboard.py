import math
import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.api.dependencies import CurrentUser, get_current_user, require_permission
from helpdesk.database import get_db
from helpdesk.models.base import TicketPriority
from helpdesk.models.role import SystemPermission
from helpdesk.models.team import Team
from helpdesk.models.ticket import Ticket
from helpdesk.schemas.audit_log import AuditLogResponse
from helpdesk.schemas.common import PaginatedResponse
from helpdesk.schemas.dashboard import (
    DashboardSummary,
    PriorityCount,
    SlaMetrics,
    SlaStatusCount,
    StatusCount,
    TeamCount,
)
from helpdesk.services import audit_service, sla_service
from helpdesk.services.ticket_service import CLOSED_STATUSES

router = APIRouter()

access_reports = require_permission(SystemPermission.access_reports)


@router.get("/summary", response_model=DashboardSummary)
async def get_summary(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Get dashboard summary with ticket counts by status, priority, team and SLA status."""
    live = Ticket.is_deleted == False
    is_open = Ticket.status.notin_(CLOSED_STATUSES)

    # Totals
    total_tickets = (await db.execute(select(func.count()).select_from(Ticket).where(live))).scalar() or 0
    open_tickets = (
        await db.execute(select(func.count()).select_from(Ticket).where(live, is_open))
    ).scalar() or 0
    unassigned_tickets = (
        await db.execute(
            select(func.count()).select_from(Ticket).where(live, is_open, Ticket.assignee_id.is_(None))
        )
    ).scalar() or 0

    # Count by status
    status_result = await db.execute(
        select(Ticket.status, func.count()).where(live).group_by(Ticket.status)
    )
    by_status = [StatusCount(status=row[0].value, count=row[1]) for row in status_result.all()]

    # Count by priority
    priority_result = await db.execute(
        select(Ticket.priority, func.count()).where(live).group_by(Ticket.priority)
    )
    by_priority = [PriorityCount(priority=row[0].value, count=row[1]) for row in priority_result.all()]

    # Open tickets by owning team
    team_result = await db.execute(
        select(Team.name, func.count())
        .join(Ticket, Ticket.owning_team_id == Team.id)
        .where(live, is_open)
        .group_by(Team.name)
    )
    by_team = [TeamCount(team_name=row[0], count=row[1]) for row in team_result.all()]

    # Open tickets by SLA status
    sla_result = await db.execute(
        select(Ticket.sla_status, func.count())
        .where(live, is_open, Ticket.sla_status.isnot(None))
        .group_by(Ticket.sla_status)
    )
    by_sla_status = [SlaStatusCount(sla_status=row[0].value, count=row[1]) for row in sla_result.all()]

    return DashboardSummary(
        total_tickets=total_tickets,
        open_tickets=open_tickets,
        unassigned_tickets=unassigned_tickets,
        by_status=by_status,
        by_priority=by_priority,
        by_team=by_team,
        by_sla_status=by_sla_status,
    )


@router.get("/sla", response_model=SlaMetrics)
async def get_sla_metrics(
    team_id: uuid.UUID | None = Query(None),
    priority: TicketPriority | None = Query(None),
    date_from: datetime | None = Query(None),
    date_to: datetime | None = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(access_reports),
):
    """Get SLA metrics (MTTA, MTTR and compliance) with optional filters."""
    filters = dict(team_id=team_id, priority=priority, date_from=date_from, date_to=date_to)
    mtta = await sla_service.get_mtta(db, **filters)
    mttr = await sla_service.get_mttr(db, **filters)
    breached_count, compliance_rate = await sla_service.get_compliance(db, **filters)

    # Resolve team name if team_id was provided
    team_name = None
    if team_id is not None:
        result = await db.execute(select(Team.name).where(Team.id == team_id))
        team_name = result.scalar_one_or_none()

    return SlaMetrics(
        mtta_seconds=mtta,
        mttr_seconds=mttr,
        breached_count=breached_count,
        compliance_rate=compliance_rate,
        team_name=team_name,
        priority=priority.value if priority else None,
    )


@router.get("/activity", response_model=PaginatedResponse[AuditLogResponse])
async def get_activity(
    actor_id: uuid.UUID | None = Query(None),
    action: str | None = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(access_reports),
):
    """Get recent ticket change log activity, paginated."""
    rows, total = await audit_service.list_recent_activity(
        db, page=page, page_size=page_size, actor_id=actor_id, action=action
    )
    items = [AuditLogResponse.from_entry(entry, ticket_number) for entry, ticket_number in rows]
    pages = math.ceil(total / page_size) if total > 0 else 0

    return PaginatedResponse(
        items=items,
        total=total,
        page=page,
        page_size=page_size,
        pages=pages,
    )
