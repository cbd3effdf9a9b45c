"""Helpers shared by the PDU, AE and association modules."""

from contextvars import copy_context
from io import BytesIO
import logging
from typing import Callable

from pydicom.uid import UID

from dimsenet import _config


LOGGER = logging.getLogger(__name__)

_ASCII_ALIASES = ("ascii", "646", "us-ascii")


def decode_bytes(encoded_value: bytes) -> str:
    """Decode an AE title or UID received from the peer.

    ASCII is tried first and then each of :attr:`~dimsenet._config.CODECS`
    in turn. A value decoded by a fallback codec is reduced to ASCII by
    dropping the characters that can't be represented.

    Raises
    ------
    ValueError
        If no codec can decode `encoded_value`.
    """
    try:
        return encoded_value.decode("ascii")
    except UnicodeDecodeError:
        LOGGER.debug("Unable to decode the value using ASCII")

    fallbacks = [c for c in _config.CODECS if c not in _ASCII_ALIASES]
    for codec in fallbacks:
        try:
            decoded = encoded_value.decode(codec)
        except UnicodeError:
            LOGGER.debug(f"Unable to decode the value using '{codec}'")
            continue

        return decoded.encode("ascii", errors="ignore").decode("ascii")

    as_hex = " ".join(f"{b:02X}" for b in encoded_value)
    codecs = ", ".join(["ascii", *fallbacks])
    raise ValueError(f"Unable to decode '{as_hex}' using the {codecs} codec(s)")


def make_target(target_fn: Callable) -> Callable:
    """Return the target to use for a new thread running `target_fn`.

    When :attr:`~dimsenet._config.PASS_CONTEXTVARS` is set the target runs
    inside a copy of the calling thread's context, otherwise `target_fn`
    is returned as-is.
    """
    if not _config.PASS_CONTEXTVARS:
        return target_fn

    ctx = copy_context()
    return lambda: ctx.run(target_fn)


def pretty_bytes(
    bytestream: bytes | BytesIO,
    prefix: str = "  ",
    delimiter: str = "  ",
    items_per_line: int = 16,
    max_size: int | None = 512,
    suffix: str = "",
) -> list[str]:
    """Return `bytestream` as lines of hex for logging.

    Parameters
    ----------
    bytestream : bytes or io.BytesIO
        The bytes to format.
    prefix : str, optional
        Start each line with `prefix`.
    delimiter : str, optional
        The separator between each byte.
    items_per_line : int, optional
        The number of bytes per line, default ``16``.
    max_size : int or None, optional
        Stop after this many bytes, default ``512``. When the output is cut
        short the first line says so. ``None`` for no limit.
    suffix : str, optional
        End each line with `suffix`.
    """
    if isinstance(bytestream, BytesIO):
        bytestream = bytestream.getvalue()

    lines = []
    for offset in range(0, len(bytestream), items_per_line):
        if max_size is not None and offset + items_per_line > max_size:
            lines.insert(0, f"{prefix}Only dumping {max_size} bytes.")
            break

        chunk = bytestream[offset : offset + items_per_line]
        lines.append(f"{prefix}{delimiter.join(f'{b:02x}' for b in chunk)}{suffix}")

    return lines


def _reject(name: str, value: object, reason: str) -> ValueError:
    msg = f"Invalid '{name}' value '{value}' - {reason}"
    LOGGER.error(msg)
    return ValueError(msg)


def set_ae(
    value: str | None, name: str, allow_empty: bool = True, allow_none: bool = True
) -> str | None:
    """Validate `value` for use as the **AE** parameter `name`.

    Parameters
    ----------
    value : str or None
        The AE title.
    name : str
        The parameter name, used in the exception messages.
    allow_empty : bool, optional
        Whether an empty or all-space value is allowed (default ``True``).
    allow_none : bool, optional
        Whether ``None`` is allowed (default ``True``).

    Returns
    -------
    str or None
        `value`, unchanged.

    Raises
    ------
    TypeError
        If `value` has the wrong type.
    ValueError
        If `value` fails validation.
    """
    if value is None and allow_none:
        return None

    if not isinstance(value, str):
        expected = "str or None" if allow_none else "str"
        raise TypeError(
            f"'{name}' must be {expected}, not '{type(value).__name__}'"
        )

    if not value.strip():
        if allow_empty:
            return value

        problem = "must not consist entirely of spaces" if value else "must not be an empty str"
        msg = f"Invalid '{name}' value - {problem}"
        LOGGER.error(msg)
        raise ValueError(msg)

    is_valid, reason = _config.VALIDATORS["AE"](value)
    if not is_valid:
        raise _reject(name, value, reason)

    return value


def set_uid(
    value: None | str | bytes | UID,
    name: str,
    allow_empty: bool = True,
    allow_none: bool = True,
) -> UID | None:
    """Return `value` as a validated :class:`~pydicom.uid.UID`.

    ``bytes`` are decoded with :func:`decode_bytes` first. A value that
    passes validation but isn't conformant is accepted with a warning.

    Raises
    ------
    TypeError
        If `value` has the wrong type.
    ValueError
        If `value` is empty when that's not allowed or fails validation.
    """
    if value is None and allow_none:
        return None

    if isinstance(value, bytes):
        value = decode_bytes(value)

    if not isinstance(value, str):
        expected = "str, bytes, UID or None" if allow_none else "str, bytes or UID"
        raise TypeError(
            f"'{name}' must be {expected}, not '{type(value).__name__}'"
        )

    uid = UID(value)
    if not uid:
        if allow_empty:
            return uid

        raise ValueError(f"Invalid '{name}' value - must not be an empty str")

    is_valid, reason = _config.VALIDATORS["UI"](uid)
    if not is_valid:
        raise _reject(name, uid, reason)

    if not uid.is_valid:
        LOGGER.warning(f"Non-conformant '{name}' value '{uid}'")

    return uid


def validate_uid(uid: str) -> bool:
    """Return ``True`` if `uid` is acceptable for use in negotiation.

    Unlike :func:`set_uid` this never raises, so it's safe to use on UIDs
    received from a peer.
    """
    if not isinstance(uid, str):
        return False

    is_valid, _ = _config.VALIDATORS["UI"](uid)
    return is_valid
