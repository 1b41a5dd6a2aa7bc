from __future__ import annotations

import secrets
import string

from provisioning_app.core.defaults import DEFAULT_TEMP_SECRET_LENGTH, MIN_TEMP_SECRET_LENGTH

UPPERCASE = string.ascii_uppercase
LOWERCASE = string.ascii_lowercase
DIGITS = string.digits
SYMBOLS = "!@#$%^&*"
SECRET_ALPHABET = UPPERCASE + LOWERCASE + DIGITS + SYMBOLS
_RANDOM = secrets.SystemRandom()


def generate_temporary_secret(length: int = DEFAULT_TEMP_SECRET_LENGTH) -> str:
    if length < MIN_TEMP_SECRET_LENGTH:
        raise ValueError(f"Temporary secrets must be at least {MIN_TEMP_SECRET_LENGTH} characters.")
    chars = [
        secrets.choice(UPPERCASE),
        secrets.choice(LOWERCASE),
        secrets.choice(DIGITS),
        secrets.choice(SYMBOLS),
    ]
    chars.extend(secrets.choice(SECRET_ALPHABET) for _ in range(length - len(chars)))
    _RANDOM.shuffle(chars)
    return "".join(chars)
