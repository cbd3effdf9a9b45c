"""Implementation of the Transport Service."""

import logging
import select
import socket
from socketserver import BaseRequestHandler, TCPServer, ThreadingMixIn
import ssl
import threading
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:  # pragma: no cover
    from dimsenet.ae import ApplicationEntity
    from dimsenet.association import Association


LOGGER = logging.getLogger(__name__)


class AssociationSocket:
    """A wrapper for a `socket.socket
    <https://docs.python.org/3/library/socket.html#socket-objects>`_ object.

    Provides the blocking interface used by the
    :class:`~dimsenet.dul.DULServiceProvider`, which is the only reader and
    writer once the association has started.

    Attributes
    ----------
    select_timeout : float or None
        The timeout (in seconds) that :func:`select.select` calls in
        :meth:`ready` will block for (default ``0.05``). A value of ``0``
        specifies a poll and never blocks.
    socket : socket.socket or None
        The wrapped socket, will be ``None`` once :meth:`close` is called.
    tls_args : tuple or None
        If the socket should be wrapped by TLS when connecting then this is
        ``(ssl.SSLContext, hostname)``.
    """

    def __init__(
        self,
        client_socket: socket.socket | None = None,
        address: tuple[str, int] = ("", 0),
    ) -> None:
        """Create a new :class:`AssociationSocket`.

        Parameters
        ----------
        client_socket : socket.socket, optional
            The socket to wrap, if not supplied then a new socket will be
            created when :meth:`connect` is called.
        address : tuple, optional
            If `client_socket` is ``None`` then this is the ``(host, port)``
            to bind the new socket to, default ``("", 0)``.
        """
        self._is_connected = client_socket is not None
        self._address = address
        self.socket = client_socket
        self.select_timeout: float | None = 0.05
        self.tls_args: tuple[ssl.SSLContext, str] | None = None
        self._lock = threading.Lock()

    def connect(self, address: tuple[str, int], timeout: float | None = None) -> None:
        """Try and connect to the peer at `address`.

        Parameters
        ----------
        address : tuple
            The ``(host, port)`` of the peer.
        timeout : float, optional
            The connection timeout, ``None`` (default) to block.

        Raises
        ------
        OSError
            If the connection couldn't be made.
        """
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.settimeout(timeout)
            if self._address != ("", 0):
                sock.bind(self._address)

            if self.tls_args:
                context, hostname = self.tls_args
                sock = context.wrap_socket(sock, server_side=False, server_hostname=hostname)

            sock.connect(address)
            # Reads use select() so the socket itself may block
            sock.settimeout(None)
        except OSError:
            LOGGER.error(f"Unable to connect to {address[0]}:{address[1]}")
            sock.close()
            raise

        self.socket = sock
        self._is_connected = True

    def close(self) -> None:
        """Close the connection to the peer and shutdown the socket.

        Sets :attr:`AssociationSocket.socket` to ``None`` once complete.
        """
        with self._lock:
            if self.socket is None:
                return

            sock, self.socket = self.socket, None
            self._is_connected = False

        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            # The peer may have closed the connection already
            pass

        sock.close()

    @property
    def is_connected(self) -> bool:
        """Return ``True`` if the socket is connected."""
        return self._is_connected and self.socket is not None

    @property
    def ready(self) -> bool:
        """Return ``True`` if there is data available to be read.

        A closed peer connection is also reported as ready so the following
        :meth:`recv` returns the end of the stream.
        """
        sock = self.socket
        if sock is None:
            return False

        if isinstance(sock, ssl.SSLSocket) and sock.pending():
            return True

        try:
            ready, _, _ = select.select([sock], [], [], self.select_timeout)
        except (OSError, ValueError):
            # The socket has been closed
            return False

        return bool(ready)

    def recv(self, nr_bytes: int) -> bytes:
        """Read `nr_bytes` from the socket.

        Blocks until either `nr_bytes` have been read or the peer has closed
        the connection, in which case fewer bytes are returned.

        Raises
        ------
        ConnectionError
            If the socket has been closed locally.
        """
        sock = self.socket
        if sock is None:
            raise ConnectionError("The connection is closed")

        bytestream = bytearray()
        # socket.recv() returns when the network buffer has been emptied
        #   not necessarily when the number of bytes requested have been
        #   read, so keep reading until we have all the data we want
        while len(bytestream) < nr_bytes:
            bufsize = min(nr_bytes - len(bytestream), 4096)
            bytes_read = sock.recv(bufsize)
            if not bytes_read:
                break

            bytestream.extend(bytes_read)

        return bytes(bytestream)

    def send(self, bytestream: bytes) -> None:
        """Send the data in `bytestream` to the peer.

        Raises
        ------
        ConnectionError
            If the socket has been closed.
        OSError
            If the data couldn't be sent.
        """
        sock = self.socket
        if sock is None:
            raise ConnectionError("The connection is closed")

        sock.sendall(bytestream)

    def get_peer(self) -> tuple[str, int]:
        """Return the peer's ``(host, port)``, or ``("", 0)`` if unknown."""
        if self.socket is None:
            return ("", 0)

        try:
            return self.socket.getpeername()[:2]
        except OSError:
            return ("", 0)

    def __str__(self) -> str:
        if self.socket is None:
            return "AssociationSocket (closed)"

        return f"AssociationSocket {self.get_peer()}"


class RequestHandler(BaseRequestHandler):
    """Connection request handler for the :class:`AssociationServer`.

    Each connection runs an acceptor :class:`~dimsenet.association.Association`
    and the handler returns once the association has ended.

    Attributes
    ----------
    client_address : tuple
        The ``(host, port)`` of the peer.
    request : socket.socket
        The connection request.
    server : transport.AssociationServer
        The server that received the connection request.
    """

    @property
    def ae(self) -> "ApplicationEntity":
        """Return the server's parent AE."""
        return self.server.ae

    def handle(self) -> None:
        """Run an association acceptor on the new connection."""
        assoc = self._create_association()
        self.server.add_association(assoc)
        try:
            assoc.start()
            assoc.join()
        finally:
            self.server.remove_association(assoc)

    def _create_association(self) -> "Association":
        from dimsenet.association import Association

        sock = AssociationSocket(self.request)
        return Association(
            self.ae,
            mode="acceptor",
            socket=sock,
            sink=self.server.sink,
            server=self.server,
            handlers=self.server.evt_handlers,
        )


class AssociationServer(TCPServer):
    """An Association server implementation.

    Any attempts to connect will be assumed to be from association requestors.

    The server should be started with
    :meth:`serve_forever(poll_interval)<AssociationServer.serve_forever>`.

    Attributes
    ----------
    ae : ae.ApplicationEntity
        The parent AE that is running the server.
    request_queue_size : int
        Default ``5``.
    server_address : tuple
        The ``(host, port)`` that the server is running on.
    sink : association.AssociationEventSink
        The callbacks for every association accepted by the server.
    """

    def __init__(
        self,
        ae: "ApplicationEntity",
        address: tuple[str, int],
        sink: Any,
        ssl_context: ssl.SSLContext | None = None,
        request_handler: type[BaseRequestHandler] | None = None,
        evt_handlers: list[Any] | None = None,
    ) -> None:
        """Create a new :class:`AssociationServer`, bind a socket and start
        listening.

        Parameters
        ----------
        ae : ae.ApplicationEntity
            The parent AE that's running the server.
        address : tuple
            The ``(host, port)`` that the server should run on.
        sink : association.AssociationEventSink
            The application callbacks.
        ssl_context : ssl.SSLContext, optional
            If TLS is to be used then this should be the context used to wrap
            the client sockets.
        request_handler : type, optional
            The request handler class, default :class:`RequestHandler`.
        evt_handlers : list of tuple, optional
            The ``(event, handler)`` or ``(event, handler, args)`` to bind to
            every association the server accepts.
        """
        self.ae = ae
        self.sink = sink
        self.evt_handlers = evt_handlers or []
        self.ssl_context = ssl_context
        self.allow_reuse_address = True
        self._lock = threading.Lock()
        self._associations: list["Association"] = []

        super().__init__(
            address, request_handler or RequestHandler, bind_and_activate=True
        )

        self.timeout = 60

    def add_association(self, assoc: "Association") -> None:
        with self._lock:
            self._associations.append(assoc)

    def remove_association(self, assoc: "Association") -> None:
        with self._lock:
            if assoc in self._associations:
                self._associations.remove(assoc)

    @property
    def active_associations(self) -> list["Association"]:
        """Return the server's running associations."""
        with self._lock:
            return [assoc for assoc in self._associations if assoc.is_alive()]

    def get_request(self) -> tuple[socket.socket, tuple[str, int]]:
        """Handle a connection request, wrapping the client socket with TLS
        if the server has an SSL context.
        """
        client_socket, address = self.socket.accept()
        if self.ssl_context:
            client_socket = self.ssl_context.wrap_socket(client_socket, server_side=True)

        return client_socket, address

    def server_bind(self) -> None:
        """Bind the socket and set the socket options."""
        self.socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self.socket.bind(self.server_address)
        self.server_address = self.socket.getsockname()[:2]

    def shutdown(self) -> None:
        """Completely shutdown the server, aborting any running associations."""
        super().shutdown()
        self.server_close()

        for assoc in self.active_associations:
            assoc.abort()


class ThreadedAssociationServer(ThreadingMixIn, AssociationServer):
    """An :class:`AssociationServer` that runs each association in its own
    thread.
    """

    daemon_threads = True

    def process_request_thread(
        self, request: socket.socket, client_address: tuple[str, int]
    ) -> None:
        """Run the association, logging any exception that escapes it."""
        try:
            self.finish_request(request, client_address)
        except Exception as exc:
            LOGGER.error(f"Exception raised by the association with {client_address}")
            LOGGER.exception(exc)
        finally:
            self.shutdown_request(request)
