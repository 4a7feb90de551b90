"""
Onboarding schemas. The three form schemas are the strict patient-submit versions;
staff edits are partial patches that are re-checked against these when marked completed.
"""

from app.portal.modules.onboarding.models import PRIORITIES
from app.portal.validation import (
    Accepted,
    Email,
    FormSchema,
    IsoDate,
    OptionalChoice,
    OptionalDate,
    OptionalEmail,
    OptionalPositiveInt,
    OptionalText,
    RequiredText,
)


class ReleaseFormSubmit(FormSchema):
    full_name: RequiredText("Full name is required") = ""
    date_of_birth: IsoDate("Date of birth is required") = None
    phone_number: RequiredText("Phone number is required") = ""
    email: Email("Valid email is required") = ""

    emergency_contact_name: RequiredText("Emergency contact name is required") = ""
    emergency_contact_phone: RequiredText("Emergency contact phone is required") = ""
    emergency_contact_email: OptionalEmail = None
    emergency_contact_relationship: OptionalText = None

    voluntary_participation: Accepted("You must acknowledge voluntary participation") = False
    medical_conditions_disclosed: Accepted("You must acknowledge medical conditions disclosure") = False
    risks_acknowledged: Accepted("You must acknowledge the risks") = False
    medical_supervision_agreed: Accepted("You must agree to medical supervision") = False
    confidentiality_understood: Accepted("You must understand confidentiality terms") = False
    liability_waiver_accepted: Accepted("You must accept the liability waiver") = False
    compliance_agreed: Accepted("You must agree to compliance") = False
    consent_to_treatment: Accepted("You must consent to treatment") = False

    signature_data: RequiredText("Signature is required") = ""
    signature_date: IsoDate("Signature date is required") = None


class OutingConsentSubmit(FormSchema):
    first_name: RequiredText("First name is required") = ""
    last_name: RequiredText("Last name is required") = ""
    date_of_birth: IsoDate("Date of birth is required") = None
    date_of_outing: OptionalDate = None
    email: Email("Valid email is required") = ""

    protocol_compliance: Accepted("You must agree to protocol compliance") = False
    proper_conduct: Accepted("You must agree to proper conduct") = False
    no_harassment: Accepted("You must agree to no harassment policy") = False
    substance_prohibition: Accepted("You must agree to substance prohibition") = False
    financial_penalties_accepted: Accepted("You must accept financial penalties terms") = False
    additional_consequences_understood: Accepted("You must understand additional consequences") = False
    declaration_read_understood: Accepted("You must confirm you have read and understood") = False

    signature_data: RequiredText("Signature is required") = ""
    signature_date: IsoDate("Signature date is required") = None


class InternalRegulationsSubmit(FormSchema):
    first_name: RequiredText("First name is required") = ""
    last_name: RequiredText("Last name is required") = ""
    email: Email("Valid email is required") = ""
    phone_number: OptionalText = None

    regulations_read_understood: Accepted("You must confirm you have read the regulations") = False
    rights_acknowledged: Accepted("You must acknowledge your rights") = False
    obligations_acknowledged: Accepted("You must acknowledge your obligations") = False
    coexistence_rules_acknowledged: Accepted("You must acknowledge coexistence rules") = False
    sanctions_acknowledged: Accepted("You must acknowledge sanctions") = False
    acceptance_confirmed: Accepted("You must confirm acceptance") = False

    signature_data: RequiredText("Signature is required") = ""
    signature_date: IsoDate("Signature date is required") = None


class OnboardingDetailsUpdate(FormSchema):
    notes: OptionalText = None
    priority: OptionalChoice(PRIORITIES, "Priority must be one of: low, normal, high, urgent") = None
    assigned_to_user_id: int | None = None
    expected_arrival_date: OptionalDate = None


class TreatmentDateAssign(FormSchema):
    treatment_date: IsoDate("Treatment date is required") = None


class MoveToOnboarding(FormSchema):
    intake_form_id: OptionalPositiveInt("Intake form id must be a positive whole number") = None
    email: OptionalText = None
