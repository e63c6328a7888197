from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from fastapi.concurrency import run_in_threadpool

from app.context import AppContext, get_context, require_session
from app.schemas.history import HistoryDetail, HistoryView
from app.services.history import detail

router = APIRouter(prefix="/api/history", dependencies=[Depends(require_session)])


@router.get("", response_model=HistoryView)
async def list_history(
    request_id: str | None = Query(None, description="Entry to highlight as active"),
    context: AppContext = Depends(get_context),
):
    return await run_in_threadpool(context.history.render, request_id)


@router.get("/{request_id}", response_model=HistoryDetail)
async def get_history_entry(request_id: str, context: AppContext = Depends(get_context)):
    entry = await run_in_threadpool(context.history.require, request_id)
    return detail(entry)


@router.delete("")
async def clear_history(context: AppContext = Depends(get_context)):
    return {"cleared": await run_in_threadpool(context.history.clear)}
