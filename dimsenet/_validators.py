"""Value checks for the AE and UI value representations.

Each validator takes the value and returns ``(is_valid, reason)``, where
`reason` is ``''`` for a valid value. The validators used by
:func:`~dimsenet.utils.set_ae` and :func:`~dimsenet.utils.set_uid` can be
replaced through :attr:`~dimsenet._config.VALIDATORS`.
"""

import logging
import unicodedata
from typing import Callable

from pydicom.uid import UID


LOGGER = logging.getLogger(__name__)

MAX_AE_LENGTH = 16
MAX_UI_LENGTH = 64


def _is_control(char: str) -> bool:
    # Unicode general categories starting with 'C' are control/format chars
    return unicodedata.category(char).startswith("C")


# (check, reason) pairs applied in order to a str AE value
_AE_RULES: tuple[tuple[Callable[[str], bool], str], ...] = (
    (lambda v: len(v) <= MAX_AE_LENGTH, f"must not exceed {MAX_AE_LENGTH} characters"),
    (str.isascii, "must only contain ASCII characters"),
    (
        lambda v: "\\" not in v and not any(_is_control(c) for c in v),
        "must not contain control characters or backslashes",
    ),
)


def validate_ae(value: str) -> tuple[bool, str]:
    """Check `value` against the rules for an **AE** value.

    Leading and trailing spaces aren't significant, so a value may be
    padded. An empty value passes; whether it's allowed is up to the
    caller.

    Parameters
    ----------
    value : str
        The **AE** value to check.

    Returns
    -------
    tuple[bool, str]
        ``(True, '')`` for a conformant value, otherwise ``False`` and a
        short description of the first rule that failed.
    """
    if not isinstance(value, str):
        return False, "must be str"

    for check, reason in _AE_RULES:
        if not check(value):
            return False, reason

    return True, ""


def validate_ui(value: UID) -> tuple[bool, str]:
    """Check `value` is acceptable as a **UI** value.

    With :attr:`~dimsenet._config.ENFORCE_UID_CONFORMANCE` the UID must be
    fully conformant, otherwise any value of 1 to 64 characters passes.
    """
    from dimsenet import _config

    if not isinstance(value, str):
        return False, "must be pydicom.uid.UID"

    uid = UID(value)
    if _config.ENFORCE_UID_CONFORMANCE:
        return (True, "") if uid.is_valid else (False, "UID is non-conformant")

    if not uid:
        return False, "must not be an empty str"

    if len(uid) > MAX_UI_LENGTH:
        return False, f"must not exceed {MAX_UI_LENGTH} characters"

    return True, ""
