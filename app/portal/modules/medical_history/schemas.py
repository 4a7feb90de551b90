from pydantic import field_validator

from app.portal.validation import (
    Choice,
    Email,
    FormSchema,
    IsoDate,
    OptionalText,
    Phone,
    RequiredText,
)


class MedicalHistorySubmit(FormSchema):
    intake_form_id: int | None = None

    first_name: RequiredText("First name is required") = ""
    last_name: RequiredText("Last name is required") = ""
    date_of_birth: IsoDate("Date of birth is required") = None
    gender: Choice(("M", "F", "other"), "Please select a gender") = ""
    weight: RequiredText("Weight is required") = ""
    height: RequiredText("Height is required") = ""
    phone_number: Phone() = ""
    email: Email() = ""
    emergency_contact_name: RequiredText("Emergency contact name is required") = ""
    emergency_contact_phone: Phone("Emergency contact phone is required") = ""

    primary_care_provider: RequiredText("Primary care provider is required") = ""
    other_physicians: OptionalText = None
    practitioners_therapists: OptionalText = None

    current_health_status: RequiredText("Current health status is required") = ""
    reason_for_coming: RequiredText("Reason for coming is required") = ""
    medical_conditions: RequiredText("Medical conditions is required") = ""
    substance_use_history: RequiredText("Substance use history is required") = ""
    family_personal_health_info: OptionalText = None
    food_allergies_intolerance: OptionalText = None
    medications_medical_use: OptionalText = None
    medications_mental_health: OptionalText = None
    mental_health_conditions: OptionalText = None
    mental_health_treatment: RequiredText("Mental health treatment status is required") = ""
    allergies: RequiredText("Allergies information is required") = ""
    previous_psychedelics_experiences: RequiredText("Previous psychedelics experiences is required") = ""
    dietary_lifestyle_habits: RequiredText("Dietary and lifestyle habits is required") = ""
    physical_activity_exercise: RequiredText("Physical activity and exercise is required") = ""

    has_physical_examination: bool = False
    has_cardiac_evaluation: bool = False
    has_liver_function_tests: bool = False
    is_pregnant: bool = False

    uploaded_file_key: OptionalText = None
    uploaded_file_name: OptionalText = None

    signature_data: RequiredText("Signature is required") = ""
    signature_date: IsoDate("Signature date is required") = None

    @field_validator("intake_form_id", mode="before")
    @classmethod
    def _blank_intake_id(cls, v):
        if v in ("", None):
            return None
        return v
