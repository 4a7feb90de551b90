"""Intake application schema."""

from pydantic import model_validator

from app.portal.modules.intake.models import PROGRAM_TYPES
from app.portal.validation import (
    Accepted,
    Choice,
    Email,
    FormSchema,
    OptionalChoice,
    OptionalDate,
    OptionalEmail,
    OptionalPhone,
    OptionalText,
    Phone,
    RequiredText,
)


class IntakeSubmit(FormSchema):
    filled_by: Choice(("self", "someone_else"), "Please select who is filling out this form") = ""
    filler_relationship: OptionalText = None
    filler_first_name: OptionalText = None
    filler_last_name: OptionalText = None
    filler_email: OptionalEmail = None
    filler_phone: OptionalPhone = None

    program_type: Choice(PROGRAM_TYPES, "Please select a program type") = ""

    first_name: RequiredText("First name is required") = ""
    last_name: RequiredText("Last name is required") = ""
    email: Email("Please enter a valid email address with a proper domain") = ""
    phone_number: Phone() = ""
    date_of_birth: OptionalDate = None
    gender: OptionalChoice(("male", "female", "other", "prefer-not-to-say"), "Please select a valid gender") = None

    address_line_1: RequiredText("Address Line 1 is required") = ""
    address_line_2: OptionalText = None
    city: RequiredText("City is required") = ""
    country: RequiredText("Country is required") = ""
    zip_code: RequiredText("Zip code or postal code is required") = ""

    emergency_contact_first_name: RequiredText("Emergency contact first name is required") = ""
    emergency_contact_last_name: RequiredText("Emergency contact last name is required") = ""
    emergency_contact_email: OptionalEmail = None
    emergency_contact_phone: Phone("Emergency contact phone number is required") = ""
    emergency_contact_address: OptionalText = None
    emergency_contact_relationship: OptionalText = None

    privacy_policy_accepted: Accepted("You must accept the Privacy Policy to continue") = False

    @model_validator(mode="after")
    def _filler_details(self):
        if self.filled_by == "someone_else":
            required = (
                self.filler_relationship,
                self.filler_first_name,
                self.filler_last_name,
                self.filler_email,
                self.filler_phone,
            )
            if not all(required):
                raise ValueError("Please fill in all required information about yourself")
        return self
