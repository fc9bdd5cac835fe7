"""
Contact field validation for the process-selection step. Runs locally,
never reaches the network.
"""

import re

from inmobapp.errors import ValidationError
from inmobapp.modules import rut

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
# Chilean numbers: optional country code 56, then 9 digits (mobiles start with 9)
PHONE_RE = re.compile(r"^(?:\+?56)?[2-9]\d{8}$")


def is_valid_email(value: str) -> bool:
    return bool(EMAIL_RE.match((value or "").strip()))


def is_valid_phone(value: str) -> bool:
    compact = re.sub(r"[\s\-().]", "", value or "")
    return bool(PHONE_RE.match(compact))


def contact_errors(owner_rut: str = "", owner_email: str = "", owner_phone: str = "") -> dict[str, str]:
    """Field -> message for every non-empty field that fails validation. Empty fields are allowed."""
    errors = {}
    if owner_rut and not rut.validate_checksum(owner_rut):
        errors["owner_rut"] = "RUT inválido"
    if owner_email and not is_valid_email(owner_email):
        errors["owner_email"] = "Correo electrónico inválido"
    if owner_phone and not is_valid_phone(owner_phone):
        errors["owner_phone"] = "Teléfono inválido (ej: +56 9 1234 5678)"
    return errors


def normalize_credential(credential: str) -> dict:
    """Login input -> {"email": ...} or {"rut": ...}. Raises ValidationError."""
    value = (credential or "").strip()
    if not value:
        raise ValidationError("Por favor ingrese su RUT o correo.", field="credential")
    if "@" in value:
        if not is_valid_email(value):
            raise ValidationError("Correo electrónico inválido", field="credential")
        return {"email": value.lower()}
    if not rut.validate_checksum(value):
        raise ValidationError("RUT inválido", field="credential")
    return {"rut": rut.clean(value)}
