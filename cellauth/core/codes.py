"""
Login code normalization and display formatting.
"""

import re

_NON_ALPHANUMERIC = re.compile(r"[^A-Za-z0-9]")


def normalize_login_code(code: str) -> str:
    """
    Strip separators and whitespace and upper-case, so that `ab12-cd34`,
    `AB12 CD34` and `AB12CD34` all compare equal.
    """
    return _NON_ALPHANUMERIC.sub("", code).upper()


def format_login_code(code: str) -> str:
    """
    Group a stored code as `XXXX-XXXX` for display.
    """
    code = normalize_login_code(code)
    half = len(code) // 2
    return f"{code[:half]}-{code[half:]}"
