from pydantic import BaseModel


class StatusCount(BaseModel):
    status: str
    count: int


class PriorityCount(BaseModel):
    priority: str
    count: int


class TeamCount(BaseModel):
    team_name: str
    count: int


class SlaStatusCount(BaseModel):
    sla_status: str
    count: int


class DashboardSummary(BaseModel):
    total_tickets: int
    open_tickets: int
    unassigned_tickets: int
    by_status: list[StatusCount]
    by_priority: list[PriorityCount]
    by_team: list[TeamCount]
    by_sla_status: list[SlaStatusCount]


class SlaMetrics(BaseModel):
    mtta_seconds: float | None
    mttr_seconds: float | None
    breached_count: int
    compliance_rate: float | None
    team_name: str | None = None
    priority: str | None = None
