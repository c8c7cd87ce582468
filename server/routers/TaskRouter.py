from fastapi import APIRouter, Depends, HTTPException, Request

from server.dependencies.auth import get_user_id, verify_api_key
from server.models.requests import ReconcileRequest
from server.models.responses import ReconcileResponse, TaskListResponse, TaskResponse
from shared.models.task import TaskStatus

router = APIRouter(tags=["tasks"])


@router.get("/tasks")
async def list_tasks(
    request: Request,
    status: TaskStatus | None = None,
    _: None = Depends(verify_api_key),
) -> TaskListResponse:
    tasks = request.app.state.task_queue.list_tasks(status=status)
    return TaskListResponse(tasks=tasks, total=len(tasks))


# declared before /tasks/{task_id} so the literal path wins
@router.get("/tasks/dead-letters")
async def list_dead_letters(
    request: Request,
    _: None = Depends(verify_api_key),
) -> TaskListResponse:
    tasks = request.app.state.task_queue.dead_letters()
    return TaskListResponse(tasks=tasks, total=len(tasks))


@router.get("/tasks/{task_id}")
async def get_task(
    request: Request,
    task_id: str,
    _: None = Depends(verify_api_key),
) -> TaskResponse:
    task = request.app.state.task_queue.get_task(task_id)
    if task is None:
        raise HTTPException(status_code=404, detail="Task not found")
    return TaskResponse(task=task)


@router.post("/maintenance/reconcile")
async def reconcile(
    request: Request,
    body: ReconcileRequest | None = None,
    user_id: str = Depends(get_user_id),
    _: None = Depends(verify_api_key),
) -> ReconcileResponse:
    """Report documents stuck in pending/processing and optionally queue them again.

    With audit=true the completed documents of the calling user are also checked for
    vector/graph chunk count mismatches.
    """
    body = body or ReconcileRequest()
    report = await request.app.state.reconciliation_service.do_reconcile(
        requeue=body.requeue,
        audit_user_id=user_id if body.audit else None,
    )
    return ReconcileResponse(report=report)
