"""
Form automation chain.

    service agreement completed -> consent form activated (or created) and linked
    consent form completed      -> onboarding record created, patient and staff emailed

Both steps run inside the caller's transaction. Email problems are recorded in the
email log and never stop the chain.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

from app.portal.audit import record_event

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.portal.models import User

logger = logging.getLogger(__name__)


def auto_activate_consent(
    s: "Session",
    *,
    intake_form_id: int | None,
    email: str,
    first_name: str,
    last_name: str,
    patient_id: int | None = None,
    actor: "User | None" = None,
) -> dict[str, Any]:
    from app.portal.modules.consent.models import IbogaineConsentForm
    from app.portal.modules.consent.service import default_facilitator_name, find_consent, send_consent_link

    now = datetime.utcnow()
    consent = find_consent(s, patient_id=patient_id, intake_form_id=intake_form_id, email=email)
    if consent is None:
        consent = IbogaineConsentForm(
            patient_id=patient_id,
            intake_form_id=intake_form_id,
            first_name=first_name,
            last_name=last_name,
            email=email,
            facilitator_doctor_name=default_facilitator_name(s),
            is_activated=True,
            activated_at=now,
            activated_by_user_id=actor.id if actor else None,
            created_at=now,
            updated_at=now,
        )
        s.add(consent)
        action = "created_new"
    elif not consent.is_activated:
        consent.is_activated = True
        consent.activated_at = now
        consent.activated_by_user_id = actor.id if actor else None
        consent.updated_at = now
        action = "activated_existing"
    else:
        action = "already_activated"

    if consent.intake_form_id is None and intake_form_id is not None:
        consent.intake_form_id = intake_form_id
    if consent.patient_id is None and patient_id is not None:
        consent.patient_id = patient_id
    s.flush()

    record_event(
        s,
        actor=actor,
        action="automation.consent_activated",
        entity_type="IbogaineConsentForm",
        entity_id=str(consent.id),
        metadata={"action": action, "intake_form_id": intake_form_id, "email": email},
    )
    if not consent.is_completed:
        send_consent_link(s, consent)
    logger.info("Consent automation for %s: %s (consent %s)", email, action, consent.id)
    return {"success": True, "action": action, "consent_id": consent.id}


def auto_create_onboarding(
    s: "Session",
    *,
    email: str,
    first_name: str,
    last_name: str,
    intake_form_id: int | None = None,
    patient_id: int | None = None,
    actor: "User | None" = None,
) -> dict[str, Any]:
    from app.portal.mailer import notify_staff
    from app.portal.modules.onboarding.service import (
        create_onboarding_record,
        find_onboarding_by_email,
        onboarding_link,
        send_onboarding_forms_email,
    )

    existing = find_onboarding_by_email(s, email)
    if existing:
        return {"success": True, "action": "already_exists", "onboarding_id": existing.id}

    onboarding = create_onboarding_record(
        s,
        email=email,
        first_name=first_name,
        last_name=last_name,
        intake_form_id=intake_form_id,
        patient_id=patient_id,
        actor=actor,
    )
    record_event(
        s,
        actor=actor,
        action="automation.onboarding_created",
        entity_type="PatientOnboarding",
        entity_id=str(onboarding.id),
        metadata={"email": email, "intake_form_id": onboarding.intake_form_id},
    )

    send_onboarding_forms_email(s, onboarding)
    notify_staff(
        s,
        template="staff_onboarding_notification",
        subject=f"Patient Automatically Moved to Onboarding - {onboarding.full_name}",
        context={
            "patient_name": onboarding.full_name,
            "patient_email": onboarding.email,
            "program_type": onboarding.program_type,
            "onboarding_link": onboarding_link(onboarding, staff=True),
        },
        entity_type="PatientOnboarding",
        entity_id=str(onboarding.id),
    )
    logger.info("Onboarding automation for %s: created onboarding %s", email, onboarding.id)
    return {"success": True, "action": "created_new", "onboarding_id": onboarding.id}
