from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect
from jose import JWTError
from sqlalchemy.orm import Session

from app.api.deps import actor_identity, get_conflict_watcher, get_db, require_roles
from app.core.security import decode_token
from app.models.conflict_record import ConflictRecord
from app.models.user import SUPERVISOR_ROLES, User
from app.schemas.conflict import (
    ActorIdentity,
    BookingSummary,
    ConflictCountOut,
    ConflictRecordOut,
    ResolutionOut,
    ResolveConflictRequest,
)
from app.services import conflict_resolution
from app.services.conflict_watcher import ChangeEvent, ConflictCountSnapshot, ConflictWatcher
from app.services.notification_hub import SUPERVISOR_CHANNEL

router = APIRouter()


def _to_out(db: Session, record: ConflictRecord) -> ConflictRecordOut:
    booking, changes = conflict_resolution.changes_against_current(db, record)
    resolved_by = None
    if record.resolved_by_name:
        resolved_by = ActorIdentity(name=record.resolved_by_name, rank=record.resolved_by_rank or "")
    return ConflictRecordOut(
        id=record.id,
        booking_id=record.booking_id,
        status=record.status,
        proposed_data=record.proposed_data,
        proposed_by=ActorIdentity(name=record.proposed_by_name, rank=record.proposed_by_rank),
        base_version=record.base_version,
        server_version=record.server_version,
        forced_pending=record.forced_pending,
        created_at=record.created_at,
        resolved_by=resolved_by,
        resolved_at=record.resolved_at,
        resolution_note=record.resolution_note,
        booking=BookingSummary.model_validate(booking, from_attributes=True) if booking is not None else None,
        changes=changes,
    )


@router.get("", response_model=list[ConflictRecordOut])
def list_pending_conflicts(
    include_queued: bool = Query(default=False),
    current_user: User = Depends(require_roles(*SUPERVISOR_ROLES)),
    db: Session = Depends(get_db),
) -> list[ConflictRecordOut]:
    del current_user
    records = conflict_resolution.list_pending(db, include_queued=include_queued)
    return [_to_out(db, record) for record in records]


@router.get("/count", response_model=ConflictCountOut)
def count_pending_conflicts(
    current_user: User = Depends(require_roles(*SUPERVISOR_ROLES)),
    db: Session = Depends(get_db),
) -> ConflictCountOut:
    del current_user
    counts = conflict_resolution.pending_count(db)
    snapshot = ConflictCountSnapshot(pending=counts.pending, queued=counts.queued)
    return ConflictCountOut(pending=snapshot.pending, queued=snapshot.queued, observed_at=snapshot.observed_at)


@router.get("/{conflict_id}", response_model=ConflictRecordOut)
def get_conflict(
    conflict_id: str,
    current_user: User = Depends(require_roles(*SUPERVISOR_ROLES)),
    db: Session = Depends(get_db),
) -> ConflictRecordOut:
    del current_user
    return _to_out(db, conflict_resolution.get_conflict(db, conflict_id))


@router.post("/{conflict_id}/resolve", response_model=ResolutionOut)
def resolve_conflict(
    conflict_id: str,
    payload: ResolveConflictRequest,
    current_user: User = Depends(require_roles(*SUPERVISOR_ROLES)),
    db: Session = Depends(get_db),
    watcher: ConflictWatcher | None = Depends(get_conflict_watcher),
) -> ResolutionOut:
    result = conflict_resolution.resolve(
        db,
        conflict_id,
        payload.decision,
        actor_identity(current_user),
        note=payload.note,
    )
    if watcher is not None and result.outcome != "already_resolved":
        watcher.publish(ChangeEvent(table="conflicts", op="update"))
    return ResolutionOut(
        conflict_id=result.conflict.id,
        outcome=result.outcome,
        status=result.conflict.status,
        message=result.message,
        booking_version=result.booking_version,
        changes=result.changes,
    )


def _extract_ws_token(websocket: WebSocket) -> str | None:
    token = websocket.query_params.get("token")
    if token:
        return token

    auth_header = websocket.headers.get("authorization")
    if not auth_header:
        return None
    scheme, _, value = auth_header.partition(" ")
    if scheme.lower() != "bearer":
        return None
    return value.strip() or None


@router.websocket("/ws")
async def conflicts_websocket(
    websocket: WebSocket,
    db: Session = Depends(get_db),
) -> None:
    token = _extract_ws_token(websocket)
    if not token:
        await websocket.close(code=1008)
        return

    try:
        payload = decode_token(token)
        user_id = payload.get("sub")
    except JWTError:
        await websocket.close(code=1008)
        return

    user = db.get(User, user_id) if user_id else None
    if user is None or not user.is_active or user.role not in SUPERVISOR_ROLES:
        await websocket.close(code=1008)
        return

    hub = websocket.app.state.notification_hub
    watcher: ConflictWatcher | None = getattr(websocket.app.state, "conflict_watcher", None)
    snapshot = watcher.latest if watcher is not None else None
    if snapshot is None:
        counts = conflict_resolution.pending_count(db)
        snapshot = ConflictCountSnapshot(pending=counts.pending, queued=counts.queued)

    await hub.connect(SUPERVISOR_CHANNEL, websocket)
    try:
        await websocket.send_json(snapshot.to_payload())
        while True:
            message = await websocket.receive_text()
            if message.strip().lower() == "ping":
                await websocket.send_json({"event": "pong"})
    except WebSocketDisconnect:
        pass
    finally:
        await hub.disconnect(SUPERVISOR_CHANNEL, websocket)
