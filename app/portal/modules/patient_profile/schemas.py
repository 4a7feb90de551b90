from app.portal.validation import Email, FormSchema, OptionalEmail, OptionalPhone, OptionalText, RequiredText


class PatientDetailsUpdate(FormSchema):
    first_name: OptionalText = None
    last_name: OptionalText = None
    phone: OptionalPhone = None
    email: OptionalEmail = None


class PatientAccountCreate(FormSchema):
    email: Email("Valid email is required") = ""
    first_name: RequiredText("First name is required") = ""
    last_name: RequiredText("Last name is required") = ""
    phone: OptionalPhone = None
    intake_form_id: int | None = None
