"""
Service agreement schemas.

Staff enter the fee block as free text ("$12,500"); Amount strips the formatting and
keeps the numeric checks.
"""

from decimal import Decimal

from app.portal.validation import (
    Amount,
    Email,
    FormSchema,
    IsoDate,
    OptionalText,
    PositiveInt,
    RequiredText,
)

TotalFee = Amount("Total program fee must be a valid number greater than 0")
Deposit = Amount("Deposit amount must be a valid number greater than 0")
DepositPercentage = Amount("Deposit percentage must be between 0 and 100", inclusive=True, maximum=Decimal("100"))
RemainingBalance = Amount("Remaining balance must be a valid number", inclusive=True)
Days = PositiveInt("Number of days must be a positive whole number")


class FeeBlock(FormSchema):
    total_program_fee: TotalFee = None
    deposit_amount: Deposit = None
    deposit_percentage: DepositPercentage = None
    remaining_balance: RemainingBalance = None
    number_of_days: Days = None


class ServiceAgreementCreate(FeeBlock):
    intake_form_id: int | None = None
    patient_id: int | None = None
    patient_first_name: RequiredText("First name is required") = ""
    patient_last_name: RequiredText("Last name is required") = ""
    patient_email: Email("Valid email is required") = ""
    patient_phone_number: OptionalText = None

    provider_signature_name: RequiredText("Provider signature name is required") = ""
    provider_signature_first_name: OptionalText = None
    provider_signature_last_name: OptionalText = None
    provider_signature_date: IsoDate("Provider signature date is required") = None
    provider_signature_data: OptionalText = None


class ServiceAgreementAdminUpdate(FeeBlock):
    provider_signature_name: RequiredText("Provider signature name is required") = ""
    provider_signature_date: IsoDate("Provider signature date is required") = None
    provider_signature_data: OptionalText = None


class ServiceAgreementUpgrade(FeeBlock):
    payment_method: RequiredText("Payment method is required") = ""


class ServiceAgreementPatientSubmit(FormSchema):
    payment_method: RequiredText("Payment method is required") = ""
    patient_signature_name: RequiredText("Patient signature name is required") = ""
    patient_signature_first_name: RequiredText("Patient first name is required") = ""
    patient_signature_last_name: RequiredText("Patient last name is required") = ""
    patient_signature_date: IsoDate("Patient signature date is required") = None
    patient_signature_data: OptionalText = None
    uploaded_file_key: OptionalText = None
    uploaded_file_name: OptionalText = None
