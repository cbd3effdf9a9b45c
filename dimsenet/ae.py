"""
The main user class, represents a DICOM Application Entity
"""

from copy import deepcopy
from datetime import datetime
import logging
from ssl import SSLContext
import threading
from typing import Any, Sequence, cast

from pydicom.uid import UID

from dimsenet import evt
from dimsenet._globals import DEFAULT_MAX_LENGTH, MODE_REQUESTOR
from dimsenet.association import Association
from dimsenet.events import AssociationEventSink
from dimsenet.exceptions import AssociationClosed
from dimsenet.pdu_items import SOPClassExtendedNegotiationSubItem
from dimsenet.presentation import (
    PolicyType,
    PresentationContext,
    SupportedContextPolicy,
    build_context,
    default_policy,
)
from dimsenet.transport import (
    AssociationServer,
    AssociationSocket,
    ThreadedAssociationServer,
)
from dimsenet.utils import make_target, set_ae, set_uid


LOGGER = logging.getLogger(__name__)


ListCXType = list[PresentationContext]
TSyntaxType = None | str | UID | Sequence[str] | Sequence[UID]


class ApplicationEntity:
    """Represents a DICOM Application Entity (AE).

    An AE may be a *Service Class Provider* (SCP), a *Service Class User* (SCU)
    or both.
    """

    # pylint: disable=too-many-instance-attributes,too-many-public-methods
    def __init__(self, ae_title: str = "DIMSENET") -> None:
        """Create a new Application Entity.

        Parameters
        ----------
        ae_title : str, optional
            The AE title of the Application Entity as an ASCII string
            (default: ``'DIMSENET'``).
        """
        self._ae_title: str
        self.ae_title = ae_title

        from dimsenet import (
            DIMSENET_IMPLEMENTATION_UID,
            DIMSENET_IMPLEMENTATION_VERSION,
        )

        # Default Implementation Class UID and Version Name
        self._implementation_uid: UID = DIMSENET_IMPLEMENTATION_UID
        self._implementation_version: str | None = DIMSENET_IMPLEMENTATION_VERSION

        # List of PresentationContext
        self._requested_contexts: ListCXType = []
        # {abstract_syntax : PresentationContext}
        self._supported_contexts: dict[UID, PresentationContext] = {}
        self._context_policy: PolicyType | None = None

        # Default maximum simultaneous associations
        self._maximum_associations = 10

        # Default maximum PDU receive size (in bytes)
        self._maximum_pdu_size = DEFAULT_MAX_LENGTH

        # Default maximum outstanding operations, (1, 1) is not negotiated
        self._maximum_operations_invoked = 1
        self._maximum_operations_performed = 1

        # Default timeouts - None means no timeout
        self._acse_timeout: float | None = 30
        self._connection_timeout: float | None = None
        self._dimse_timeout: float | None = 30
        self._network_timeout: float | None = 60

        # Require Calling/Called AE titles to match if value is non-empty str
        self._require_calling_aet: list[str] = []
        self._require_called_aet = False

        self._servers: list[ThreadedAssociationServer] = []
        self._lock: threading.Lock = threading.Lock()

    @property
    def acse_timeout(self) -> float | None:
        """Get or set the ACSE timeout value (in seconds).

        Parameters
        ----------
        value : int | float | None
            The maximum amount of time (in seconds) to wait for association
            related messages. A value of ``None`` means no timeout. (default:
            ``30``)
        """
        return self._acse_timeout

    @acse_timeout.setter
    def acse_timeout(self, value: float | None) -> None:
        """Set the ACSE timeout (in seconds)."""
        self._acse_timeout = self._check_timeout(value, "acse_timeout", 30)

    @property
    def active_associations(self) -> list[Association]:
        """Return a list of the AE's active
        :class:`~dimsenet.association.Association` threads.

        Returns
        -------
        list of Association
            A list of all active association threads, both requestors and
            acceptors.
        """
        threads = threading.enumerate()
        t_assocs = [tt for tt in threads if isinstance(tt, Association)]

        return [tt for tt in t_assocs if tt.ae == self]

    def add_requested_context(
        self,
        abstract_syntax: str | UID,
        transfer_syntax: TSyntaxType = None,
    ) -> None:
        """Add a presentation context to be proposed when requesting an
        association.

        Parameters
        ----------
        abstract_syntax : str or pydicom.uid.UID
            The abstract syntax of the presentation context to request.
        transfer_syntax : str/pydicom.uid.UID or list of str/pydicom.uid.UID
            The transfer syntax(es) to request (default:
            :attr:`~dimsenet._globals.DEFAULT_TRANSFER_SYNTAXES`).

        Raises
        ------
        ValueError
            If 128 requested presentation contexts have already been added.
        """
        if len(self._requested_contexts) >= 128:
            raise ValueError(
                "Failed to add the requested presentation context as there "
                "are already the maximum allowed number of requested contexts"
            )

        self._requested_contexts.append(build_context(abstract_syntax, transfer_syntax))

    def add_supported_context(
        self,
        abstract_syntax: str | UID,
        transfer_syntax: TSyntaxType = None,
    ) -> None:
        """Add a presentation context to be supported when accepting
        association requests.

        Where the abstract syntax is already supported the transfer syntaxes
        will be extended by those supplied in `transfer_syntax`.

        Parameters
        ----------
        abstract_syntax : str, pydicom.uid.UID
            The abstract syntax of the presentation context to be supported.
        transfer_syntax :  str/pydicom.uid.UID or list of str/pydicom.uid.UID
            The transfer syntax(es) to support (default:
            :attr:`~dimsenet._globals.DEFAULT_TRANSFER_SYNTAXES`).
        """
        context = build_context(abstract_syntax, transfer_syntax)
        uid = cast(UID, context.abstract_syntax)
        if uid in self._supported_contexts:
            for syntax in context.transfer_syntax:
                self._supported_contexts[uid].add_transfer_syntax(syntax)
        else:
            self._supported_contexts[uid] = context

    @property
    def ae_title(self) -> str:
        """Get or set the AE title as :class:`str`.

        Parameters
        ----------
        value : str
            The AE title to use for the local Application Entity as an ASCII
            string.
        """
        return self._ae_title

    @ae_title.setter
    def ae_title(self, value: str) -> None:
        """Set the AE title using :class:`str`."""
        self._ae_title = cast(str, set_ae(value, "ae_title", False, False))

    def associate(
        self,
        addr: str,
        port: int,
        contexts: ListCXType | None = None,
        ae_title: str = "ANY-SCP",
        max_pdu: int | None = None,
        ext_neg: list[SOPClassExtendedNegotiationSubItem] | None = None,
        roles: dict[str, tuple[bool, bool]] | None = None,
        bind_address: tuple[str, int] = ("", 0),
        tls_args: tuple[SSLContext, str] | None = None,
        evt_handlers: list[evt.HandlerArgType] | None = None,
        sink: AssociationEventSink | None = None,
    ) -> Association:
        """Request an association with a remote AE.

        Blocks until the association has been accepted, rejected or has
        failed.

        Parameters
        ----------
        addr : str
            The peer AE's TCP/IP address.
        port : int
            The peer AE's listen port number.
        contexts : list of presentation.PresentationContext, optional
            The presentation contexts that will be requested by the AE for
            support by the peer. If not used then the presentation contexts in
            the :attr:`requested_contexts` property will be requested instead.
        ae_title : str, optional
            The peer's AE title, will be used as the *Called AE Title*
            parameter value (default ``'ANY-SCP'``).
        max_pdu : int, optional
            The maximum PDU receive size for this association, default
            :attr:`maximum_pdu_size`.
        ext_neg : list of pdu_items.SOPClassExtendedNegotiationSubItem, optional
            The SOP Class Extended Negotiation items to send.
        roles : dict, optional
            The SCP/SCU Role Selection to propose as ``{SOP Class UID: (SCU
            role, SCP role)}``.
        bind_address : tuple, optional
            The ``(host, port)`` to bind the association's socket to.
        tls_args : 2-tuple, optional
            If TLS is required then this should be ``(ssl.SSLContext, host)``.
        evt_handlers : list of 2- or 3-tuple, optional
            A list of (*event*, *handler*) or (*event*, *handler*, *args*) to
            bind to the association.
        sink : events.AssociationEventSink, optional
            The application callbacks, default
            :class:`~dimsenet.events.HandlerEventSink`.

        Returns
        -------
        association.Association
            The established association.

        Raises
        ------
        exceptions.NegotiationError
            If the association was rejected or none of the proposed
            presentation contexts were accepted.
        exceptions.AssociationClosed
            If the connection failed, or the request was aborted or timed
            out.
        ValueError
            If there are no proposed presentation contexts or more than 128.
        """
        if not isinstance(addr, str):
            raise TypeError("'addr' must be str")

        if not isinstance(port, int):
            raise TypeError("'port' must be int")

        ae_title = cast(str, set_ae(ae_title, "ae_title", False, False))
        contexts = deepcopy(contexts or self.requested_contexts)

        sock = AssociationSocket(address=bind_address)
        sock.tls_args = tls_args
        try:
            sock.connect((addr, port), self.connection_timeout)
        except OSError as exc:
            raise AssociationClosed(
                f"Unable to connect to the peer at {addr}:{port}: {exc}"
            ) from exc

        assoc = Association(
            self, MODE_REQUESTOR, socket=sock, sink=sink, handlers=evt_handlers
        )
        timestamp = datetime.strftime(datetime.now(), "%Y%m%d%H%M%S")
        assoc.name = f"RequestorThread@{timestamp}"

        # Association Acceptor object -> remote AE
        assoc.acceptor.ae_title = ae_title
        # Association Requestor object -> local AE
        if max_pdu is not None:
            assoc.requestor.maximum_length = max_pdu

        assoc.requestor.requested_contexts = contexts
        assoc.requestor.role_selection = dict(roles or {})
        assoc.requestor.extended_negotiation = list(ext_neg or [])

        try:
            assoc.request()
        except ValueError:
            sock.close()
            raise

        if assoc.is_established:
            return assoc

        # Ensure the application has been notified before raising
        assoc._wait_ended()
        if assoc.is_rejected and assoc._negotiation_error:
            raise assoc._negotiation_error

        raise AssociationClosed(
            "The association request was aborted or the connection failed"
        )

    @staticmethod
    def _check_timeout(value: float | None, name: str, default: float) -> float | None:
        if value is None:
            return None

        if isinstance(value, (int, float)) and value >= 0:
            return value

        LOGGER.warning(f"{name} set to {default} seconds")
        return default

    @property
    def connection_timeout(self) -> float | None:
        """Get or set the connection timeout (in seconds).

        Parameters
        ----------
        value : int, float or None
            The maximum amount of time (in seconds) to wait for a TCP
            connection to be established. A value of ``None`` (default) means
            no timeout.
        """
        return self._connection_timeout

    @connection_timeout.setter
    def connection_timeout(self, value: float | None) -> None:
        """Set the connection timeout."""
        self._connection_timeout = self._check_timeout(value, "connection_timeout", 30)

    @property
    def context_policy(self) -> PolicyType:
        """Get or set the policy used to negotiate proposed presentation
        contexts.

        If not set then the :attr:`supported_contexts` are used, or if there
        are none then the default category policy.
        """
        if self._context_policy is not None:
            return self._context_policy

        if self._supported_contexts:
            return SupportedContextPolicy(self._supported_contexts.values())

        return default_policy()

    @context_policy.setter
    def context_policy(self, policy: PolicyType | None) -> None:
        self._context_policy = policy

    @property
    def dimse_timeout(self) -> float | None:
        """Get or set the DIMSE timeout (in seconds).

        Parameters
        ----------
        value : int, float or None
            The maximum amount of time (in seconds) to wait for the final
            response to a request. A value of ``None`` means no timeout
            (default: ``30``).
        """
        return self._dimse_timeout

    @dimse_timeout.setter
    def dimse_timeout(self, value: float | None) -> None:
        """Set the DIMSE timeout in seconds."""
        self._dimse_timeout = self._check_timeout(value, "dimse_timeout", 30)

    @property
    def implementation_class_uid(self) -> UID:
        """Get or set the *Implementation Class UID* as
        :class:`~pydicom.uid.UID`.
        """
        return self._implementation_uid

    @implementation_class_uid.setter
    def implementation_class_uid(self, value: str) -> None:
        """Set the *Implementation Class UID* used in association requests."""
        uid = cast(UID, set_uid(value, "implementation_class_uid", False, False))
        self._implementation_uid = uid

    @property
    def implementation_version_name(self) -> str | None:
        """Get or set the *Implementation Version Name* as :class:`str`."""
        return self._implementation_version

    @implementation_version_name.setter
    def implementation_version_name(self, value: str | None) -> None:
        """Set the *Implementation Version Name*"""
        if value is not None and not 1 <= len(value) <= 16:
            raise ValueError(
                "Invalid 'implementation_version_name' value - must be "
                "between 1 and 16 characters long"
            )

        self._implementation_version = value

    def make_server(
        self,
        address: tuple[str, int],
        ssl_context: SSLContext | None = None,
        sink: AssociationEventSink | None = None,
        evt_handlers: list[evt.HandlerArgType] | None = None,
        server_class: type[AssociationServer] | None = None,
    ) -> AssociationServer:
        """Return an association server.

        Parameters
        ----------
        address : tuple[str, int]
            The ``(host, port)`` to listen on.
        ssl_context : ssl.SSLContext, optional
            If TLS is required then this should be the
            :class:`ssl.SSLContext` used to wrap the client sockets.
        sink : events.AssociationEventSink, optional
            The application callbacks for every accepted association.
        evt_handlers : list of 2- or 3-tuple, optional
            The ``(event, handler)`` or ``(event, handler, args)`` to bind
            to every accepted association.
        server_class : type, optional
            The server class, default
            :class:`~dimsenet.transport.ThreadedAssociationServer`.
        """
        server_class = server_class or ThreadedAssociationServer
        return server_class(
            self, address, sink, ssl_context=ssl_context, evt_handlers=evt_handlers
        )

    @property
    def maximum_associations(self) -> int:
        """Get or set the number of maximum simultaneous associations as
        :class:`int`.

        Parameters
        ----------
        value : int
            The maximum number of simultaneous associations requested by remote
            AEs. This does not include the number of associations
            requested by the local AE (default ``10``).
        """
        return self._maximum_associations

    @maximum_associations.setter
    def maximum_associations(self, value: int) -> None:
        """Set the number of maximum associations."""
        if isinstance(value, int) and value >= 1:
            self._maximum_associations = value
        else:
            LOGGER.warning("maximum_associations set to 1")
            self._maximum_associations = 1

    @property
    def maximum_operations_invoked(self) -> int:
        """Get or set the maximum number of operations the AE may have
        outstanding as the association requestor.

        A value of ``0`` means unlimited. If both this and
        :attr:`maximum_operations_performed` are ``1`` (default) then no
        *Asynchronous Operations Window* is proposed.
        """
        return self._maximum_operations_invoked

    @maximum_operations_invoked.setter
    def maximum_operations_invoked(self, value: int) -> None:
        if not isinstance(value, int) or not 0 <= value <= 0xFFFF:
            raise ValueError("'maximum_operations_invoked' must be an int in [0, 65535]")

        self._maximum_operations_invoked = value

    @property
    def maximum_operations_performed(self) -> int:
        """Get or set the maximum number of operations the AE can perform
        at once, ``0`` for unlimited (default ``1``).
        """
        return self._maximum_operations_performed

    @maximum_operations_performed.setter
    def maximum_operations_performed(self, value: int) -> None:
        if not isinstance(value, int) or not 0 <= value <= 0xFFFF:
            raise ValueError(
                "'maximum_operations_performed' must be an int in [0, 65535]"
            )

        self._maximum_operations_performed = value

    @property
    def maximum_pdu_size(self) -> int:
        """Get or set the maximum PDU size accepted by the AE as :class:`int`.

        Parameters
        ----------
        value : int
            The maximum PDU receive size in bytes. A value of ``0`` means the
            PDU size is unlimited (default: ``16382``).
        """
        return self._maximum_pdu_size

    @maximum_pdu_size.setter
    def maximum_pdu_size(self, value: int) -> None:
        """Set the maximum PDU size."""
        # 0 indicates no maximum length (PS3.8 Annex D.1.1)
        if value >= 0:
            self._maximum_pdu_size = value
        else:
            LOGGER.warning(f"maximum_pdu_size set to {DEFAULT_MAX_LENGTH}")
            self._maximum_pdu_size = DEFAULT_MAX_LENGTH

    @property
    def network_timeout(self) -> float | None:
        """Get or set the network timeout (in seconds).

        Parameters
        ----------
        value : int, float or None
            The maximum amount of time (in seconds) to wait for network
            messages. A value of ``None`` means no timeout (default: ``60``).
        """
        return self._network_timeout

    @network_timeout.setter
    def network_timeout(self, value: float | None) -> None:
        """Set the network timeout."""
        self._network_timeout = self._check_timeout(value, "network_timeout", 60)

    def remove_requested_context(self, abstract_syntax: str | UID) -> None:
        """Remove every requested context with `abstract_syntax`."""
        self._requested_contexts = [
            cx for cx in self._requested_contexts if cx.abstract_syntax != abstract_syntax
        ]

    def remove_supported_context(self, abstract_syntax: str | UID) -> None:
        """Remove the supported context with `abstract_syntax`."""
        self._supported_contexts.pop(UID(abstract_syntax), None)

    @property
    def requested_contexts(self) -> ListCXType:
        """Get or set the requested presentation contexts.

        Parameters
        ----------
        contexts : list of presentation.PresentationContext
            The presentation contexts to request when acting as an SCU.

        Raises
        ------
        ValueError
            If trying to add more than 128 requested presentation contexts.
        """
        return self._requested_contexts

    @requested_contexts.setter
    def requested_contexts(self, contexts: ListCXType) -> None:
        """Set the requested presentation contexts."""
        self._requested_contexts = []
        for cx in contexts:
            self.add_requested_context(
                cast(UID, cx.abstract_syntax), cx.transfer_syntax
            )

    @property
    def require_called_aet(self) -> bool:
        """Get or set whether the *Called AE Title* must match the AE title.

        Parameters
        ----------
        require_match : bool
            If ``True`` then any association requests that supply a
            *Called AE Title* value that does not match :attr:`ae_title`
            will be rejected. If ``False`` (default) then all association
            requests will be accepted (unless rejected for other reasons).
        """
        return self._require_called_aet

    @require_called_aet.setter
    def require_called_aet(self, require_match: bool) -> None:
        """Set whether the *Called AE Title* must match the AE title."""
        self._require_called_aet = require_match

    @property
    def require_calling_aet(self) -> list[str]:
        """Get or set the required calling AE title as a list of :class:`str`.

        If not empty then any association requests that supply a *Calling AE
        Title* value that does not match one of the values will be rejected.
        """
        return self._require_calling_aet

    @require_calling_aet.setter
    def require_calling_aet(self, ae_titles: list[str]) -> None:
        """Set the required calling AE title."""
        self._require_calling_aet = [
            cast(str, set_ae(v, "require_calling_aet", False, False)) for v in ae_titles
        ]

    def shutdown(self) -> None:
        """Stop any active association servers and threads."""
        for assoc in self.active_associations:
            assoc.abort()

        with self._lock:
            servers, self._servers = self._servers, []

        for server in servers:
            server.shutdown()

    def start_server(
        self,
        address: tuple[str, int],
        block: bool = True,
        ssl_context: SSLContext | None = None,
        sink: AssociationEventSink | None = None,
        evt_handlers: list[evt.HandlerArgType] | None = None,
    ) -> AssociationServer | None:
        """Start the AE as an association *acceptor*.

        If set to non-blocking then a running
        :class:`~dimsenet.transport.ThreadedAssociationServer`
        instance will be returned. This can be stopped using
        :meth:`~dimsenet.transport.AssociationServer.shutdown`.

        Parameters
        ----------
        address : tuple[str, int]
            The host IP address and port number to use when listening for
            incoming association requests.
        block : bool, optional
            If ``True`` (default) then the server will be blocking, otherwise
            it will start the server in a new thread and be non-blocking.
        ssl_context : ssl.SSLContext, optional
            If TLS is required then this should the :class:`ssl.SSLContext`
            instance to use to wrap the client sockets, otherwise if ``None``
            then no TLS will be used (default).
        sink : events.AssociationEventSink, optional
            The application callbacks for every accepted association,
            default :class:`~dimsenet.events.HandlerEventSink`.
        evt_handlers : list of 2- or 3-tuple, optional
            A list of (*event*, *handler*) or (*event*, *handler*, *args*),
            where `event` is an ``evt.EVT_*`` event tuple, `handler` is a
            callable function that will be bound to the event and `args` is a
            :class:`list` of objects that will be passed to `handler` as
            optional extra arguments.

        Returns
        -------
        transport.ThreadedAssociationServer or None
            If `block` is ``False`` then returns the server instance, otherwise
            returns ``None``.
        """
        server = self.make_server(
            address, ssl_context=ssl_context, sink=sink, evt_handlers=evt_handlers
        )
        with self._lock:
            self._servers.append(cast(ThreadedAssociationServer, server))

        if block:
            try:
                # **BLOCKING**
                server.serve_forever()
            except KeyboardInterrupt:
                server.shutdown()

            return None

        # Non-blocking server
        timestamp = datetime.strftime(datetime.now(), "%Y%m%d%H%M%S")
        thread = threading.Thread(
            target=make_target(server.serve_forever), name=f"AcceptorServer@{timestamp}"
        )
        thread.daemon = True
        thread.start()

        return server

    def __str__(self) -> str:
        """Prints out the attribute values and status for the AE"""
        s = [
            "",
            f"Application Entity {self.ae_title}",
            "",
            "  Requested Presentation Contexts:",
        ]
        s.extend(f"    {cx.abstract_syntax}" for cx in self.requested_contexts)
        s.append("")
        s.append("  Supported Presentation Contexts:")
        s.extend(f"    {cx.abstract_syntax}" for cx in self.supported_contexts)
        s.append("")
        s.append(f"  ACSE timeout: {self.acse_timeout} s")
        s.append(f"  DIMSE timeout: {self.dimse_timeout} s")
        s.append(f"  Network timeout: {self.network_timeout} s")
        s.append(f"  Maximum PDU size: {self.maximum_pdu_size} bytes")
        s.append(f"  Maximum associations: {self.maximum_associations}")
        s.append("")
        s.append(f"  Active associations: {len(self.active_associations)}")

        return "\n".join(s)

    @property
    def supported_contexts(self) -> ListCXType:
        """Get or set the supported presentation contexts, sorted by
        abstract syntax.
        """
        return sorted(
            self._supported_contexts.values(), key=lambda cx: cx.abstract_syntax or ""
        )

    @supported_contexts.setter
    def supported_contexts(self, contexts: ListCXType) -> None:
        """Set the supported presentation contexts."""
        self._supported_contexts = {}
        for cx in contexts:
            self.add_supported_context(
                cast(UID, cx.abstract_syntax), cx.transfer_syntax
            )
