"""
Password Utilities

Deterministic strength scoring and CSPRNG-based password generation.
"""

import re
import secrets
import string

from luxeledger.models.crypto import PasswordStrength


LOWERCASE = string.ascii_lowercase
UPPERCASE = string.ascii_uppercase
DIGITS = string.digits
SYMBOLS = "!@#$%^&*()_+-=[]{}|;:,.<>?"

_RULES = (
    re.compile(r"[a-z]"),
    re.compile(r"[A-Z]"),
    re.compile(r"[0-9]"),
    re.compile(r"[^A-Za-z0-9]"),
)


def check_password_strength(password: str) -> PasswordStrength:
    """
    Score a password.

    One point each for: length >= 8, length >= 12, a lowercase letter, an
    uppercase letter, a digit, a symbol. 0-2 weak, 3 fair, 4 good, 5-6
    strong.
    """
    if not password:
        return PasswordStrength.WEAK

    score = 0
    if len(password) >= 8:
        score += 1
    if len(password) >= 12:
        score += 1
    score += sum(1 for rule in _RULES if rule.search(password))

    if score <= 2:
        return PasswordStrength.WEAK
    if score <= 3:
        return PasswordStrength.FAIR
    if score <= 4:
        return PasswordStrength.GOOD
    return PasswordStrength.STRONG


def generate_password(length: int = 16, include_symbols: bool = True) -> str:
    """
    Generate a random password.

    From length 4 up, one character of every required class is seeded
    first; the remainder comes from the combined alphabet and the result is
    shuffled so class characters do not sit at predictable positions.

    Raises:
        ValueError: If length is negative
    """
    if length < 0:
        raise ValueError("Password length cannot be negative")

    classes = [LOWERCASE, UPPERCASE, DIGITS]
    if include_symbols:
        classes.append(SYMBOLS)
    alphabet = "".join(classes)

    chars = []
    if length >= 4:
        chars = [secrets.choice(charset) for charset in classes]
    chars.extend(secrets.choice(alphabet) for _ in range(length - len(chars)))

    secrets.SystemRandom().shuffle(chars)
    return "".join(chars)
