"""Client-side form validators. Advisory only: the API is authoritative."""

import re
from typing import Dict, Optional

from pydantic import BaseModel

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
CODE_RE = re.compile(r"^\d{6}$")
PHONE_RE = re.compile(r"^\+\d{1,15}$")
NAME_RE = re.compile(r"^[a-zA-ZáéíóúÁÉÍÓÚñÑüÜ\s\-'.]+$")
SPECIAL_RE = re.compile(r"[!@#$%^&*()_+\-=\[\]{};':\"\\|,.<>/?]")

STRENGTH_LABELS = ["Very weak", "Weak", "Fair", "Strong", "Very strong"]


class ValidationResult(BaseModel):
    is_valid: bool
    message: Optional[str] = None


class FormValidation(BaseModel):
    fields: Dict[str, ValidationResult]

    @property
    def is_valid(self) -> bool:
        return all(r.is_valid for r in self.fields.values())

    def errors(self) -> Dict[str, str]:
        return {name: r.message or "" for name, r in self.fields.items() if not r.is_valid}


def _ok() -> ValidationResult:
    return ValidationResult(is_valid=True)


def _fail(message: str) -> ValidationResult:
    return ValidationResult(is_valid=False, message=message)


def validate_email(email: str) -> ValidationResult:
    if not email or not email.strip():
        return _fail("Email is required")
    if not EMAIL_RE.match(email):
        return _fail("Email format is not valid")
    if len(email) > 254:
        return _fail("Email is too long")
    return _ok()


def validate_password(password: str) -> ValidationResult:
    """Registration password policy"""
    if not password:
        return _fail("Password is required")
    if len(password) < 8:
        return _fail("Password must be at least 8 characters")
    if len(password) > 128:
        return _fail("Password is too long (maximum 128 characters)")
    if not re.search(r"[a-z]", password):
        return _fail("Password must contain at least one lowercase letter")
    if not re.search(r"[A-Z]", password):
        return _fail("Password must contain at least one uppercase letter")
    if not re.search(r"\d", password):
        return _fail("Password must contain at least one number")
    if not SPECIAL_RE.search(password):
        return _fail("Password must contain at least one special character (!@#$%^&*...)")
    return _ok()


def validate_confirm_password(password: str, confirm_password: str) -> ValidationResult:
    if not confirm_password:
        return _fail("Confirm your password")
    if password != confirm_password:
        return _fail("Passwords do not match")
    return _ok()


def validate_name(name: str) -> ValidationResult:
    if not name or not name.strip():
        return _fail("Name is required")
    if len(name.strip()) < 2:
        return _fail("Name must be at least 2 characters")
    if len(name) > 100:
        return _fail("Name is too long (maximum 100 characters)")
    if not NAME_RE.match(name):
        return _fail("Name may only contain letters, spaces and - ' .")
    return _ok()


def validate_phone(phone: str) -> ValidationResult:
    if not phone or not phone.strip():
        return _fail("Telephone is required")
    clean = re.sub(r"[\s\-()]", "", phone)
    if not PHONE_RE.match(clean):
        return _fail("Telephone must use international format (+1234567890)")
    if len(clean) < 8:
        return _fail("Telephone is too short")
    if len(clean) > 16:
        return _fail("Telephone is too long")
    return _ok()


def validate_code(code: str) -> ValidationResult:
    """Six-digit verification code"""
    if not code or not code.strip():
        return _fail("Code is required")
    if not CODE_RE.match(code):
        return _fail("Code must be 6 digits")
    return _ok()


def validate_login_form(email: str, password: str) -> FormValidation:
    # Login only checks presence; the password policy applies at registration
    return FormValidation(fields={
        "email": validate_email(email),
        "password": _ok() if password else _fail("Password is required"),
    })


def validate_register_form(
    name: str,
    email: str,
    password: str,
    confirm_password: str,
    telephone: str,
) -> FormValidation:
    return FormValidation(fields={
        "name": validate_name(name),
        "email": validate_email(email),
        "password": validate_password(password),
        "confirm_password": validate_confirm_password(password, confirm_password),
        "telephone": validate_phone(telephone),
    })


def get_password_strength(password: str) -> Dict[str, object]:
    """Score 0-4 with a display label"""
    score = 0
    if len(password) >= 8:
        score += 1
    if re.search(r"[a-z]", password):
        score += 1
    if re.search(r"[A-Z]", password):
        score += 1
    if re.search(r"\d", password):
        score += 1
    if SPECIAL_RE.search(password):
        score += 1
    score = min(score, 4)
    return {"score": score, "label": STRENGTH_LABELS[score]}


def sanitize_input(value: str) -> str:
    value = value.strip()
    value = re.sub(r"[<>]", "", value)
    value = re.sub(r"javascript:", "", value, flags=re.IGNORECASE)
    return re.sub(r"on\w+=", "", value, flags=re.IGNORECASE)
