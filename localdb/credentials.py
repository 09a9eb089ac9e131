import secrets
import string

# Convenience: the characters of all generated user names and passwords.
ALPHABET = string.ascii_letters + string.digits


def rand_string(length: int) -> str:
    """Return a random alphanumeric string with `length` characters.

    Uses the `secrets` module because the strings become database credentials.

    """
    assert length > 0
    return str.join("", [secrets.choice(ALPHABET) for _ in range(length)])
