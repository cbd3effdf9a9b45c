"""dimsenet configuration options"""

from typing import Callable

from dimsenet._validators import validate_ae, validate_ui


LOG_HANDLER_LEVEL: str = "standard"
"""Default (non-user) event logging

* If ``"none"`` then events will not be logged at all, however there will still
  be some logging (warnings, errors, etc)
* If ``"standard"`` then certain events will be logged (association
  negotiation, DIMSE messaging, etc)

Default: ``"standard"``

Examples
--------

>>> from dimsenet import _config
>>> _config.LOG_HANDLER_LEVEL = "none"
"""


ENFORCE_UID_CONFORMANCE: bool = False
"""Enforce UID conformance

If ``True`` then UIDs will be checked to ensure they're conformant to the
DICOM Standard, otherwise UIDs will only be checked to ensure they're no
longer than 64 characters. Presentation contexts with non-conformant abstract
or transfer syntaxes are rejected as not supported during negotiation.

Default: ``False``

Examples
--------

>>> from dimsenet import _config
>>> _config.ENFORCE_UID_CONFORMANCE = True
"""


LOG_RESPONSE_IDENTIFIERS: bool = True
"""Log incoming C-FIND, C-GET and C-MOVE response *Identifier* datasets.

If ``True`` then the *Identifier* datasets received in Pending
responses to C-FIND, C-GET and C-MOVE requests will be logged.

Default: ``True``

Examples
--------

>>> from dimsenet import _config
>>> _config.LOG_RESPONSE_IDENTIFIERS = False
"""


RELEASE_DRAIN_TIMEOUT: float = 30
"""The number of seconds to wait for pending operations during release.

When :meth:`~dimsenet.association.Association.release` is called while
requests are still awaiting their final response, the association waits up
to this many seconds for them to complete. If any remain after the wait then
the association is aborted instead of released and each remaining operation
fails with :class:`~dimsenet.exceptions.AssociationClosed`. A value of ``0``
aborts immediately if any operation is outstanding.

Default: ``30``

Examples
--------

>>> from dimsenet import _config
>>> _config.RELEASE_DRAIN_TIMEOUT = 0
"""


PASS_CONTEXTVARS: bool = False
"""Pass context-local state to concurrent dimsenet code.

If ``True``, then any ``contextvars.ContextVar`` instances defined in the
calling context will be made available to dimsenet's concurrent contexts.
This allows the caller to define contextual behavior (such as setting up
correlation IDs for logging) that is preserved in the reader and worker
threads.

Default: ``False``

Examples
--------

>>> from dimsenet import _config
>>> _config.PASS_CONTEXTVARS = True
"""


CODECS: tuple[str, ...] = ("ascii",)
"""Customise the codecs used to decode text values in A-ASSOCIATE PDUs.

The AE titles and the *Implementation Version Name* are decoded using
ASCII first and then each of the codecs in turn. Codecs should be given as
the codec name used by Python, see the :mod:`codecs` module.

Default: ``("ascii",)``

Examples
--------

>>> from dimsenet import _config
>>> _config.CODECS = ("ascii", "latin_1")
"""


VALIDATORS: dict[str, Callable] = {"AE": validate_ae, "UI": validate_ui}
"""Customise the validation performed on AE titles and UIDs.

Each validator takes the value to be checked and returns a tuple of
``(bool, str)``: whether the value is valid and if not, the reason why.

Default: ``{"AE": validate_ae, "UI": validate_ui}``

Examples
--------

>>> from dimsenet import _config
>>> def my_validator(value):
...     return True, ""
...
>>> _config.VALIDATORS["AE"] = my_validator
"""
