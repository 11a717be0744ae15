"""
forms.py — Delivery/contact form validation.

Validation is purely local: nothing here talks to the remote API, and payment
may only proceed when validate_checkout_form returns an empty map.
"""

import re
from typing import Dict, Tuple

from .errors import ValidationError
from .models import CheckoutForm, ContactInfo, DeliveryAddress

REQUIRED_FIELDS = ("full_name", "email", "phone", "address_line1", "city", "country")

EMAIL_PATTERN = re.compile(r"^\S+@\S+\.\S+$")
PHONE_PATTERN = re.compile(r"^\+?[\d\s\-()]+$")

REQUIRED_MESSAGE = "This field is required"
EMAIL_MESSAGE = "Please enter a valid email address"
PHONE_MESSAGE = "Please enter a valid phone number"


def validate_checkout_form(form: CheckoutForm) -> Dict[str, str]:
    """
    Validates the delivery/contact form.

    Args:
        form (CheckoutForm): Raw form state.

    Returns:
        Dict[str, str]: Field name to message. Empty when the form is valid.
    """
    errors = {}
    for field in REQUIRED_FIELDS:
        if not getattr(form, field).strip():
            errors[field] = REQUIRED_MESSAGE

    email = form.email.strip()
    if email and not EMAIL_PATTERN.match(email):
        errors["email"] = EMAIL_MESSAGE

    phone = form.phone.strip()
    if phone and not PHONE_PATTERN.match(phone):
        errors["phone"] = PHONE_MESSAGE

    return errors


def clean_checkout_form(form: CheckoutForm) -> Tuple[DeliveryAddress, ContactInfo]:
    """
    Returns the validated address and contact details.

    Raises:
        ValidationError: With the field map when the form is invalid.
    """
    errors = validate_checkout_form(form)
    if errors:
        raise ValidationError("Please correct the highlighted fields", field_errors=errors)
    return form.delivery_address(), form.contact_info()
