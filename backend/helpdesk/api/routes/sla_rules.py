from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.api.dependencies import CurrentUser, get_current_user, require_permission
from helpdesk.database import get_db
from helpdesk.models.role import SystemPermission
from helpdesk.schemas.sla_rule import SlaRuleCreate, SlaRuleReorder, SlaRuleResponse, SlaRuleUpdate
from helpdesk.services import sla_rule_service

router = APIRouter()

manage_settings = require_permission(SystemPermission.manage_system_settings)


@router.get("/", response_model=list[SlaRuleResponse])
async def list_rules(
    active_only: bool = Query(False),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """List SLA rules in evaluation order."""
    return await sla_rule_service.list_rules(db, active_only=active_only)


@router.post("/", response_model=SlaRuleResponse, status_code=status.HTTP_201_CREATED)
async def create_rule(
    data: SlaRuleCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(manage_settings),
):
    rule = await sla_rule_service.create_rule(db, data)
    await db.commit()
    return rule


@router.put("/reorder", response_model=list[SlaRuleResponse])
async def reorder_rules(
    data: SlaRuleReorder,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(manage_settings),
):
    """Set the evaluation order to the order of the given ids."""
    rules = await sla_rule_service.reorder_rules(db, data.rule_ids)
    await db.commit()
    return rules


@router.get("/{rule_id}", response_model=SlaRuleResponse)
async def get_rule(
    rule_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    return await sla_rule_service.get_rule(db, rule_id)


@router.patch("/{rule_id}", response_model=SlaRuleResponse)
async def update_rule(
    rule_id: UUID,
    data: SlaRuleUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(manage_settings),
):
    rule = await sla_rule_service.update_rule(db, rule_id, data)
    await db.commit()
    return rule


@router.delete("/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_rule(
    rule_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(manage_settings),
):
    await sla_rule_service.delete_rule(db, rule_id)
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
