from app.portal.validation import (
    Accepted,
    Email,
    FormSchema,
    IsoDate,
    OptionalDate,
    OptionalText,
    Phone,
    RequiredText,
)


class ConsentSubmit(FormSchema):
    intake_form_id: int | None = None

    first_name: RequiredText("First name is required") = ""
    last_name: RequiredText("Last name is required") = ""
    date_of_birth: IsoDate("Date of birth is required") = None
    phone_number: Phone() = ""
    email: Email("Valid email is required") = ""
    address: RequiredText("Address is required") = ""
    treatment_date: OptionalDate = None
    facilitator_doctor_name: OptionalText = None

    consent_for_treatment: Accepted("You must consent to treatment") = False
    risks_and_benefits: Accepted("You must acknowledge the risks and benefits") = False
    pre_screening_health_assessment: Accepted("You must acknowledge the pre-screening health assessment") = False
    voluntary_participation: Accepted("You must acknowledge voluntary participation") = False
    confidentiality: Accepted("You must acknowledge the confidentiality terms") = False
    liability_release: Accepted("You must accept the liability release") = False
    payment_collection: Accepted("You must acknowledge the payment collection terms") = False

    signature_data: RequiredText("Signature is required") = ""
    signature_date: IsoDate("Signature date is required") = None
    signature_name: RequiredText("Signature name is required") = ""


class ConsentAdminUpdate(FormSchema):
    date_of_birth: IsoDate("Date of birth is required") = None
    address: RequiredText("Address is required") = ""
    facilitator_doctor_name: OptionalText = None


class ConsentDefaultsUpdate(FormSchema):
    facilitator_doctor_name: RequiredText("Facilitator doctor name is required") = ""
