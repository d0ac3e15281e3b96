"""
Generate random codes and names
"""

import secrets

# Upper-case letters and digits without the easily confused 0/O and 1/I.
LOGIN_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
LOGIN_CODE_LENGTH = 8

# 96 random bytes, URL-safe base64 encoded.
RECOVERY_CODE_LENGTH = 128

_ADJECTIVES = (
    "Happy",
    "Curious",
    "Cheerful",
    "Bright",
    "Calm",
    "Eager",
    "Gentle",
    "Honest",
    "Kind",
    "Lively",
    "Polite",
    "Proud",
    "Silly",
    "Witty",
    "Brave",
)

_NOUNS = (
    "Penguin",
    "Tiger",
    "Dolphin",
    "Eagle",
    "Koala",
    "Panda",
    "Fox",
    "Wolf",
    "Owl",
    "Rabbit",
    "Lion",
    "Bear",
    "Deer",
    "Hawk",
    "Turtle",
)


def login_code() -> str:
    return "".join(
        secrets.choice(LOGIN_CODE_ALPHABET) for _ in range(LOGIN_CODE_LENGTH)
    )


def recovery_code() -> str:
    return secrets.token_urlsafe(RECOVERY_CODE_LENGTH * 3 // 4)


def anonymous_name() -> str:
    return (
        f"{secrets.choice(_ADJECTIVES)}{secrets.choice(_NOUNS)}"
        f"{secrets.randbelow(1000)}"
    )


def name_suffix() -> str:
    return str(secrets.randbelow(10000))
