from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from portal.database.db import get_db
from portal.domain.actors import Registrant, Reviewer
from portal.routes.deps import get_actor, get_admission_controller, get_lifecycle_service, get_registrant
from portal.schemas.registrations import RegistrationCreate, RegistrationOut, RegistrationUpdate, StatusChange
from portal.services.admission import AdmissionController, PaymentClaim
from portal.services.lifecycle import LifecycleService

router = APIRouter(tags=["registrations"])


@router.post("/events/{event_id}/registrations", response_model=RegistrationOut, status_code=201)
def create_registration(
    event_id: int,
    payload: RegistrationCreate,
    actor: Registrant = Depends(get_registrant),
    controller: AdmissionController = Depends(get_admission_controller),
    db: Session = Depends(get_db),
):
    return controller.submit(
        db,
        event_id=event_id,
        subject_id=actor.subject_id,
        kind=payload.kind,
        team_name=payload.team_name,
        team_members=[member.model_dump(exclude_none=True) for member in payload.team_members],
        payment=PaymentClaim(
            amount=payload.payment.amount,
            external_reference=payload.payment.external_reference,
            screenshot_ref=payload.payment.screenshot_ref,
        ),
        details=payload.details,
    )


@router.get("/registrations/{registration_id}", response_model=RegistrationOut)
def get_registration(
    registration_id: str,
    actor: Registrant | Reviewer = Depends(get_actor),
    lifecycle: LifecycleService = Depends(get_lifecycle_service),
    db: Session = Depends(get_db),
):
    return lifecycle.get(db, registration_id, actor)


@router.patch("/registrations/{registration_id}", response_model=RegistrationOut)
def update_registration(
    registration_id: str,
    payload: RegistrationUpdate,
    actor: Registrant | Reviewer = Depends(get_actor),
    lifecycle: LifecycleService = Depends(get_lifecycle_service),
    db: Session = Depends(get_db),
):
    details = payload.model_dump(exclude_none=True, exclude={"screenshot_ref"})
    return lifecycle.update_own(
        db, registration_id, actor, details=details, screenshot_ref=payload.screenshot_ref
    )


@router.post("/registrations/{registration_id}/cancel", response_model=RegistrationOut)
def cancel_registration(
    registration_id: str,
    actor: Registrant | Reviewer = Depends(get_actor),
    lifecycle: LifecycleService = Depends(get_lifecycle_service),
    db: Session = Depends(get_db),
):
    return lifecycle.cancel(db, registration_id, actor)


@router.post("/registrations/{registration_id}/status", response_model=RegistrationOut)
def change_status(
    registration_id: str,
    payload: StatusChange,
    actor: Registrant | Reviewer = Depends(get_actor),
    lifecycle: LifecycleService = Depends(get_lifecycle_service),
    db: Session = Depends(get_db),
):
    return lifecycle.transition(db, registration_id, payload.status, actor, notes=payload.admin_notes)
