"""ticketflow FastAPI application."""

from __future__ import annotations

from collections.abc import Generator

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Query
from sqlmodel import Session

from ticketflow.automation.loader import RuleLoader
from ticketflow.db import create_db_and_tables, get_session, session_scope
from ticketflow.models import TicketReply
from ticketflow.schemas import (
    AgentCreateRequest,
    AgentGroupCreateRequest,
    AutomationRuleCreateRequest,
    AutomationRuleSummary,
    AutomationRuleUpdateRequest,
    SweepResponse,
    TicketActivitySummary,
    TicketCreateRequest,
    TicketReplyRequest,
    TicketReplySummary,
    TicketSummary,
    TicketUpdateRequest,
)
from ticketflow.services import AgentService, RuleService, TicketService, TimeTriggerSweeper
from ticketflow.services.ticket_service import serialize_activity
from ticketflow.settings import settings
from ticketflow.time_utils import coerce_utc

app = FastAPI(title="ticketflow", version="0.1.0")

ticket_service = TicketService()
rule_service = RuleService(RuleLoader(settings.rules_dir_path))
agent_service = AgentService()
sweeper = TimeTriggerSweeper()


def db_session() -> Generator[Session, None, None]:
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@app.on_event("startup")
def startup() -> None:
    create_db_and_tables()
    if settings.seed_rules_on_startup:
        with session_scope() as session:
            rule_service.import_rules(session)


@app.get("/health")
def health() -> dict:
    return {"status": "ok", "service": "ticketflow"}


def _ticket_or_404(session: Session, ticket_id: str) -> TicketSummary:
    summary = ticket_service.get_ticket_summary(session, ticket_id)
    if summary is None:
        raise HTTPException(status_code=404, detail="ticket not found")
    return summary


@app.post("/tickets", response_model=TicketSummary, status_code=201)
def create_ticket(payload: TicketCreateRequest, session: Session = Depends(db_session)) -> TicketSummary:
    try:
        ticket = ticket_service.create_ticket(session, payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _ticket_or_404(session, ticket.ticket_id)


@app.get("/tickets", response_model=list[TicketSummary])
def list_tickets(
    limit: int = Query(default=100, ge=1, le=1000),
    session: Session = Depends(db_session),
) -> list[TicketSummary]:
    return ticket_service.list_ticket_summaries(session, limit=limit)


@app.get("/tickets/{ticket_id}", response_model=TicketSummary)
def get_ticket(ticket_id: str, session: Session = Depends(db_session)) -> TicketSummary:
    return _ticket_or_404(session, ticket_id)


@app.patch("/tickets/{ticket_id}", response_model=TicketSummary)
def update_ticket(
    ticket_id: str,
    payload: TicketUpdateRequest,
    session: Session = Depends(db_session),
) -> TicketSummary:
    try:
        ticket_service.update_ticket(session, ticket_id, payload)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return _ticket_or_404(session, ticket_id)


def _serialize_reply(reply: TicketReply) -> TicketReplySummary:
    return TicketReplySummary(
        id=reply.id,
        ticket_id=reply.ticket_id,
        author_id=reply.author_id,
        body=reply.body,
        is_internal=bool(reply.is_internal),
        created_at=coerce_utc(reply.created_at),
    )


@app.post("/tickets/{ticket_id}/replies", response_model=TicketReplySummary, status_code=201)
def add_reply(
    ticket_id: str,
    payload: TicketReplyRequest,
    session: Session = Depends(db_session),
) -> TicketReplySummary:
    try:
        reply = ticket_service.add_reply(session, ticket_id, payload)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return _serialize_reply(reply)


@app.get("/tickets/{ticket_id}/replies", response_model=list[TicketReplySummary])
def get_ticket_replies(ticket_id: str, session: Session = Depends(db_session)) -> list[TicketReplySummary]:
    try:
        rows = ticket_service.get_ticket_replies(session, ticket_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return [_serialize_reply(row) for row in rows]


@app.get("/tickets/{ticket_id}/activities", response_model=list[TicketActivitySummary])
def get_ticket_activities(
    ticket_id: str,
    limit: int = Query(default=200, ge=1, le=1000),
    session: Session = Depends(db_session),
) -> list[TicketActivitySummary]:
    try:
        rows = ticket_service.get_ticket_activities(session, ticket_id, limit=limit)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return [serialize_activity(row) for row in rows]


@app.post("/automation-rules", response_model=AutomationRuleSummary, status_code=201)
def create_rule(
    payload: AutomationRuleCreateRequest,
    session: Session = Depends(db_session),
) -> AutomationRuleSummary:
    rule = rule_service.create_rule(session, payload)
    return rule_service.serialize_rule(rule)


@app.get("/automation-rules", response_model=list[AutomationRuleSummary])
def list_rules(
    limit: int = Query(default=200, ge=1, le=1000),
    session: Session = Depends(db_session),
) -> list[AutomationRuleSummary]:
    return [rule_service.serialize_rule(rule) for rule in rule_service.list_rules(session, limit=limit)]


@app.get("/automation-rules/{rule_id}", response_model=AutomationRuleSummary)
def get_rule(rule_id: str, session: Session = Depends(db_session)) -> AutomationRuleSummary:
    rule = rule_service.get_rule(session, rule_id)
    if rule is None:
        raise HTTPException(status_code=404, detail="rule not found")
    return rule_service.serialize_rule(rule)


@app.patch("/automation-rules/{rule_id}", response_model=AutomationRuleSummary)
def update_rule(
    rule_id: str,
    payload: AutomationRuleUpdateRequest,
    session: Session = Depends(db_session),
) -> AutomationRuleSummary:
    try:
        rule = rule_service.update_rule(session, rule_id, payload)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return rule_service.serialize_rule(rule)


@app.delete("/automation-rules/{rule_id}", status_code=204)
def delete_rule(rule_id: str, session: Session = Depends(db_session)) -> None:
    try:
        rule_service.delete_rule(session, rule_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.post("/agents", status_code=201)
def create_agent(payload: AgentCreateRequest, session: Session = Depends(db_session)) -> dict:
    try:
        agent = agent_service.create_agent(session, payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"agent_id": agent.agent_id, "name": agent.name, "email": agent.email, "is_active": agent.is_active}


@app.post("/agent-groups", status_code=201)
def create_agent_group(payload: AgentGroupCreateRequest, session: Session = Depends(db_session)) -> dict:
    try:
        group = agent_service.create_group(session, payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {
        "group_id": group.group_id,
        "name": group.name,
        "assignment_method": group.assignment_method,
        "member_ids": list(dict.fromkeys(payload.member_ids)),
    }


@app.post("/automation/sweep", response_model=SweepResponse)
def run_sweep(
    cadence: str | None = Query(default=None),
    session: Session = Depends(db_session),
) -> SweepResponse:
    return sweeper.sweep(session, cadence=cadence)


def main() -> None:
    uvicorn.run(
        "ticketflow.api:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=False,
    )


if __name__ == "__main__":
    main()
