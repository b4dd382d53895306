import secrets
import string

from ..core.config import get_settings


CODE_ALPHABET = string.ascii_uppercase + string.digits


def generate_confirmation_code(prefix: str | None = None, length: int | None = None) -> str:
    """Random human-facing code such as ``APT-7K2QX9ZD``."""
    settings = get_settings()
    prefix = settings.confirmation_code_prefix if prefix is None else prefix
    length = settings.confirmation_code_length if length is None else length
    return prefix + "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def format_appointment_number(sequence: int, prefix: str | None = None, width: int | None = None) -> str:
    """``format_appointment_number(1) == "APT00001"``."""
    settings = get_settings()
    prefix = settings.appointment_number_prefix if prefix is None else prefix
    width = settings.appointment_number_width if width is None else width
    return f"{prefix}{sequence:0{width}d}"
