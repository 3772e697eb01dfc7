"""Admin API endpoints with simple token auth."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status

from upload_bot.domain.errors import NotFoundError, ValidationError
from upload_bot.services.sessions import parse_session_id

if TYPE_CHECKING:
    from upload_bot.containers import AppContainer
    from upload_bot.domain.sessions import SessionRecord

router = APIRouter(prefix="/admin", tags=["admin"])


def _get_admin_token(request: Request) -> str:
    container: AppContainer = request.app.state.container
    return container.settings.admin_token


async def require_admin(
    x_admin_token: str | None = Header(default=None),
    admin_token: str = Depends(_get_admin_token),
) -> None:
    """Ensure requests include a valid admin token."""
    if not x_admin_token or x_admin_token != admin_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)


@router.get("/health", dependencies=[Depends(require_admin)])
async def admin_health(request: Request) -> dict[str, object]:
    """Admin health check, including storage connectivity."""
    container: AppContainer = request.app.state.container
    storage_ok = await container.storage_service.test_connection()
    return {"status": "ok", "storage": storage_ok}


@router.get("/sessions", dependencies=[Depends(require_admin)])
async def list_sessions(
    request: Request,
    page: int = Query(default=1, ge=1),
    size: int = Query(default=20, ge=1, le=100),
) -> dict[str, object]:
    """Return one page of sessions with upload counts."""
    container: AppContainer = request.app.state.container
    result = container.admin_service.list_sessions(page, size)
    return {
        "sessions": [
            {
                **_session_payload(session),
                "uploads": result.upload_counts.get(session.id, 0),
            }
            for session in result.sessions
        ],
        "total": result.total,
        "pages": result.pages,
        "page": result.current_page,
    }


@router.get("/sessions/{session_id}/stats", dependencies=[Depends(require_admin)])
async def session_stats(session_id: str, request: Request) -> dict[str, object]:
    """Return aggregates and per-status counts for a session."""
    container: AppContainer = request.app.state.container
    session = _resolve_session(container, session_id)
    stats = container.session_service.get_stats(session.id)
    if stats is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND)
    return {
        "session": _session_payload(session),
        "total_files": stats.total_files,
        "total_size_mb": stats.total_size_mb,
        "success_count": stats.success_count,
        "failed_count": stats.failed_count,
        "pending_count": stats.pending_count,
    }


@router.delete("/sessions/{session_id}", dependencies=[Depends(require_admin)])
async def delete_session(session_id: str, request: Request) -> dict[str, object]:
    """Delete a session, its uploads, and its stored objects."""
    container: AppContainer = request.app.state.container
    session = _resolve_session(container, session_id)
    try:
        result = await container.admin_service.delete_session_and_files(session.id)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND) from exc
    return {
        "session_id": result.session_id,
        "deleted_files": result.deleted_files,
        "remaining_files": result.remaining_files,
        "storage_error": result.storage_error,
    }


def _resolve_session(container: AppContainer, session_id: str) -> SessionRecord:
    try:
        normalized = parse_session_id(session_id)
    except ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)
        ) from exc
    session = container.session_service.get_by_external_id(normalized)
    if session is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND)
    return session


def _session_payload(session: SessionRecord) -> dict[str, object]:
    return {
        "id": str(session.id),
        "session_id": session.session_id,
        "description": session.description,
        "status": session.status.value,
        "total_files": session.total_files,
        "total_size_mb": session.total_size_mb,
        "storage_folder_path": session.storage_folder_path,
        "created_by": session.created_by,
        "created_at": session.created_at.isoformat(),
    }
