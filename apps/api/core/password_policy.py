"""
Password policy for self-registration.

- 8 to 72 characters (bcrypt only hashes the first 72 bytes)
- at least one letter and one digit
- not on the common-password blocklist
"""
import re
from typing import List, Tuple

COMMON_PASSWORDS = {
    "password", "password1", "password123", "12345678", "123456789", "1234567890",
    "qwerty123", "abc12345", "letmein1", "welcome1", "iloveyou1", "admin123",
    "passw0rd", "p@ssw0rd", "trustno1", "football1", "baseball1", "sunshine1",
    "goals123", "stakewise1", "accountability1",
}

MIN_LENGTH = 8
MAX_BYTES = 72


def validate_password(password: str) -> Tuple[bool, List[str]]:
    """Returns (is_valid, errors)."""
    errors = []

    if len(password) < MIN_LENGTH:
        errors.append(f"Password must be at least {MIN_LENGTH} characters")
    if len(password.encode("utf-8")) > MAX_BYTES:
        errors.append(f"Password must not exceed {MAX_BYTES} bytes")
    if not re.search(r"[A-Za-z]", password):
        errors.append("Password must contain at least one letter")
    if not re.search(r"\d", password):
        errors.append("Password must contain at least one digit")
    if password.lower() in COMMON_PASSWORDS:
        errors.append("Password is too common, please choose a stronger password")

    return not errors, errors
