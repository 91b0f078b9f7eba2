from datetime import date

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from app.api.deps import actor_identity, get_conflict_watcher, get_current_user, get_db, require_roles
from app.models.user import SUPERVISOR_ROLES, User
from app.schemas.booking import (
    BookingCreate,
    BookingEdit,
    BookingEvaluate,
    BookingOut,
    EditOut,
    SubmissionOut,
)
from app.schemas.conflict import ConflictVerdictOut
from app.services import booking_workflow
from app.services.conflict_watcher import ChangeEvent, ConflictWatcher
from app.services.edit_conflicts import apply_edit

router = APIRouter()


@router.post("/evaluate", response_model=ConflictVerdictOut)
def evaluate_booking(
    payload: BookingEvaluate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ConflictVerdictOut:
    del current_user
    verdict = booking_workflow.evaluate(
        db,
        shoot_date=payload.shoot_date,
        start_time=payload.start_time,
        end_time=payload.end_time,
        rental_type=payload.rental_type,
        exclude_id=payload.exclude_booking_id,
    )
    return ConflictVerdictOut(**verdict.to_payload())


@router.post("", response_model=SubmissionOut)
def submit_booking(
    payload: BookingCreate,
    response: Response,
    force_pending: bool = Query(default=False),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> SubmissionOut:
    result = booking_workflow.submit_booking(db, payload, force_pending=force_pending, actor=current_user)
    if result.created:
        response.status_code = status.HTTP_201_CREATED
    return SubmissionOut(
        created=result.created,
        deduplicated=result.deduplicated,
        status=result.status,
        booking=result.booking,
        conflict=ConflictVerdictOut(**result.verdict.to_payload()) if result.verdict.has_conflict else None,
    )


@router.get("", response_model=list[BookingOut])
def list_bookings(
    shoot_date: date | None = Query(default=None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[BookingOut]:
    del current_user
    return booking_workflow.list_bookings(db, shoot_date=shoot_date)


@router.get("/approvals/pending", response_model=list[BookingOut])
def list_pending_approvals(
    current_user: User = Depends(require_roles(*SUPERVISOR_ROLES)),
    db: Session = Depends(get_db),
) -> list[BookingOut]:
    del current_user
    return booking_workflow.list_pending_approvals(db)


@router.get("/{booking_id}", response_model=BookingOut)
def get_booking(
    booking_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> BookingOut:
    del current_user
    return booking_workflow.get_booking(db, booking_id)


@router.put("/{booking_id}", response_model=EditOut)
def edit_booking(
    booking_id: str,
    payload: BookingEdit,
    response: Response,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    watcher: ConflictWatcher | None = Depends(get_conflict_watcher),
) -> EditOut:
    booking = booking_workflow.get_booking(db, booking_id)
    booking_workflow.ensure_editable(booking)
    verdict = booking_workflow.evaluate_fields(db, payload.fields, exclude_id=booking_id)
    decision = booking_workflow.pending_decision(verdict, payload.force_pending)
    conflict_out = ConflictVerdictOut(**verdict.to_payload()) if verdict.has_conflict else None
    if decision is not None and not decision.forced:
        return EditOut(outcome="conflict", conflict=conflict_out, message=verdict.message)

    snapshot = booking_workflow.build_edit_snapshot(booking, payload.fields, decision)
    outcome = apply_edit(
        db,
        booking_id,
        payload.base_version,
        snapshot,
        actor_identity(current_user),
        forced_pending=decision is not None and decision.forced,
    )
    if outcome.applied:
        return EditOut(outcome="applied", booking=outcome.booking, conflict=conflict_out, message=outcome.message)

    if watcher is not None:
        watcher.publish(ChangeEvent(table="conflicts", op="insert"))
    response.status_code = status.HTTP_202_ACCEPTED
    return EditOut(
        outcome="stored_as_conflict",
        conflict_id=outcome.conflict.id,
        conflict=conflict_out,
        message=outcome.message,
    )


@router.post("/{booking_id}/approve", response_model=BookingOut)
def approve_booking(
    booking_id: str,
    current_user: User = Depends(require_roles(*SUPERVISOR_ROLES)),
    db: Session = Depends(get_db),
) -> BookingOut:
    return booking_workflow.approve_booking(db, booking_id, current_user)


@router.post("/{booking_id}/reject", response_model=BookingOut)
def reject_booking(
    booking_id: str,
    current_user: User = Depends(require_roles(*SUPERVISOR_ROLES)),
    db: Session = Depends(get_db),
) -> BookingOut:
    return booking_workflow.reject_booking(db, booking_id, current_user)


@router.delete("/{booking_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_booking(
    booking_id: str,
    current_user: User = Depends(require_roles(*SUPERVISOR_ROLES)),
    db: Session = Depends(get_db),
) -> Response:
    booking_workflow.delete_booking(db, booking_id, current_user)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
