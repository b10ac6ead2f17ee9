"""HTTP API exposing orchestrator capabilities."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field

from conductor.core.errors import BusClosed, ProvisioningFailed, UnknownAgent, UnknownTask
from conductor.core.models import (
    DEFAULT_PRIORITY,
    MAX_PRIORITY,
    MIN_PRIORITY,
    Agent,
    Message,
    MessageKind,
    TaskRecord,
)
from conductor.orchestration.orchestrator import Orchestrator

router = APIRouter(tags=["orchestrator"])


def get_orchestrator(request: Request) -> Orchestrator:
    return request.app.state.orchestrator


class InputRequest(BaseModel):
    text: str = Field(..., description="One line as typed at the REPL")


class InputResponse(BaseModel):
    response: str


class AgentCreateRequest(BaseModel):
    agent_type: str = Field(..., min_length=1, description="Agent type or role to spawn")
    placement: str = Field("horizontal", description="Placement hint for the execution context")


class AgentResponse(BaseModel):
    agent_id: str
    agent_type: str
    status: str
    context: Optional[str]
    created_at: datetime
    task_count: int
    last_error: Optional[str]

    @classmethod
    def from_agent(cls, agent: Agent) -> "AgentResponse":
        return cls(
            agent_id=agent.agent_id,
            agent_type=agent.agent_type,
            status=agent.status.value,
            context=agent.context,
            created_at=agent.created_at,
            task_count=agent.task_count,
            last_error=agent.last_error,
        )


class MessageRequest(BaseModel):
    sender: str = Field(..., description="Identifier of the sender")
    kind: MessageKind = MessageKind.TASK
    priority: int = Field(DEFAULT_PRIORITY, ge=MIN_PRIORITY, le=MAX_PRIORITY)
    payload: Any = Field(default_factory=dict, description="Any JSON value")
    correlation_id: Optional[str] = None


class TaskCreateRequest(BaseModel):
    description: str = Field(..., min_length=1)
    target: Optional[str] = Field(None, description="Agent ID; broadcast when omitted")
    priority: Optional[int] = Field(None, ge=MIN_PRIORITY, le=MAX_PRIORITY)


class TaskResponse(BaseModel):
    task_id: str
    description: str
    state: str
    correlation_id: str
    recipient: str
    targets: List[str]
    results: List[Dict[str, Any]]
    error: Optional[str]
    retry_of: Optional[str]
    created_at: datetime

    @classmethod
    def from_record(cls, record: TaskRecord) -> "TaskResponse":
        return cls(
            task_id=record.task_id,
            description=record.description,
            state=record.state.value,
            correlation_id=record.correlation_id,
            recipient=record.recipient,
            targets=list(record.targets),
            results=list(record.results),
            error=record.error,
            retry_of=record.retry_of,
            created_at=record.created_at,
        )


@router.post("/input", response_model=InputResponse)
async def submit_input(
    request: InputRequest,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> InputResponse:
    return InputResponse(response=await orchestrator.handle_input(request.text))


@router.get("/status")
async def get_status(orchestrator: Orchestrator = Depends(get_orchestrator)) -> dict:
    return orchestrator.status_report()


@router.post("/agents", response_model=AgentResponse, status_code=status.HTTP_201_CREATED)
async def create_agent(
    request: AgentCreateRequest,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> AgentResponse:
    try:
        agent_id = await orchestrator.spawn(request.agent_type, request.placement)
    except ProvisioningFailed as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return AgentResponse.from_agent(orchestrator.registry.get(agent_id))


@router.get("/agents", response_model=List[AgentResponse])
async def list_agents(
    agent_type: Optional[str] = None,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> List[AgentResponse]:
    return [AgentResponse.from_agent(agent) for agent in orchestrator.list_agents(agent_type)]


@router.get("/agents/{agent_id}", response_model=AgentResponse)
async def get_agent(agent_id: str, orchestrator: Orchestrator = Depends(get_orchestrator)) -> AgentResponse:
    try:
        return AgentResponse.from_agent(orchestrator.registry.get(agent_id))
    except UnknownAgent as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc


@router.delete("/agents/{agent_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_agent(agent_id: str, orchestrator: Orchestrator = Depends(get_orchestrator)) -> None:
    try:
        await orchestrator.terminate(agent_id)
    except UnknownAgent as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc


@router.post("/agents/{agent_id}/messages", status_code=status.HTTP_202_ACCEPTED)
async def send_message(
    agent_id: str,
    request: MessageRequest,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> dict:
    if agent_id not in orchestrator.registry:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown agent")
    fields: Dict[str, Any] = {}
    if request.correlation_id:
        fields["correlation_id"] = request.correlation_id
    message = Message(
        sender=request.sender,
        recipient=agent_id,
        kind=request.kind,
        payload=request.payload,
        priority=request.priority,
        **fields,
    )
    try:
        await orchestrator.bus.publish(message)
    except BusClosed as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return {"correlation_id": message.correlation_id}


@router.post("/tasks", response_model=TaskResponse, status_code=status.HTTP_202_ACCEPTED)
async def create_task(
    request: TaskCreateRequest,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> TaskResponse:
    try:
        record = await orchestrator.submit(
            request.description, target=request.target, priority=request.priority
        )
    except UnknownAgent as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except BusClosed as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return TaskResponse.from_record(record)


@router.get("/tasks", response_model=List[TaskResponse])
async def list_tasks(orchestrator: Orchestrator = Depends(get_orchestrator)) -> List[TaskResponse]:
    return [TaskResponse.from_record(record) for record in orchestrator.tasks()]


@router.get("/tasks/{task_id}", response_model=TaskResponse)
async def get_task(task_id: str, orchestrator: Orchestrator = Depends(get_orchestrator)) -> TaskResponse:
    try:
        return TaskResponse.from_record(orchestrator.get_task(task_id))
    except UnknownTask as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
