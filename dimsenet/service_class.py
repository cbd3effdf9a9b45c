"""Implements the supported Service Classes.

Each service class turns a request received from the peer into the
responses to be sent back. :meth:`ServiceClass.SCP` is a generator, the
association sends each response as it's yielded so C-FIND, C-GET and C-MOVE
requests can return any number of *Pending* responses before the final one.
"""

import logging
import sys
from types import TracebackType
from typing import TYPE_CHECKING, Any, Iterator, Type

from pydicom.dataset import Dataset

from dimsenet import _config, evt
from dimsenet._globals import (
    STATUS_CANCEL,
    STATUS_FAILURE,
    STATUS_PENDING,
    STATUS_SUCCESS,
    STATUS_WARNING,
)
from dimsenet.dimse_messages import _MANAGED_KEYWORDS, DIMSEMessage, response_for
from dimsenet.dsutils import encode_for, pretty_dataset
from dimsenet.exceptions import AssociationClosed, NegotiationError
from dimsenet.presentation import StoragePresentationContexts
from dimsenet.status import (
    GENERAL_STATUS,
    QR_SERVICE_CLASS_STATUS,
    STORAGE_SERVICE_CLASS_STATUS,
    Status,
    code_to_category,
)

if TYPE_CHECKING:  # pragma: no cover
    from dimsenet.ae import ApplicationEntity
    from dimsenet.association import Association


LOGGER = logging.getLogger(__name__)

StatusType = int | Dataset
_ExcInfoType = (
    tuple[None, None, None] | tuple[Type[BaseException], BaseException, TracebackType]
)


class attempt:
    """Context manager for failing a response when an exception is raised.

    The code within the context is executed, and if an exception is raised
    then it's logged and the response *Status* is set to the error status.
    The response is then sent by the caller as usual.
    """

    def __init__(self, rsp: DIMSEMessage) -> None:
        self._success = True
        # Should be customised within the context
        self.error_msg = "Exception occurred"
        self.error_status: int = Status.UNHANDLED_EXCEPTION
        self._rsp = rsp

    def __enter__(self) -> "attempt":
        return self

    def __exit__(
        self,
        exc_type: Type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> bool | None:
        if exc_type is None:
            return None

        # Exception raised within the context
        LOGGER.error(self.error_msg)
        LOGGER.exception(exc_val)
        self._rsp["Status"] = int(self.error_status)
        self._success = False

        # The failure is reported to the peer in the response
        return True

    @property
    def success(self) -> bool:
        """Return ``True`` if the code within the context executed without
        raising an exception, ``False`` otherwise.
        """
        return self._success


class ServiceClass:
    """The base class for all the service classes.

    Attributes
    ----------
    assoc : association.Association
        The association instance offering the service.
    """

    statuses: dict[int, tuple[str, str]] = GENERAL_STATUS

    def __init__(self, assoc: "Association") -> None:
        """Create a new ServiceClass."""
        self.assoc = assoc

    @property
    def ae(self) -> "ApplicationEntity":
        """Return the AE."""
        return self.assoc.ae

    def is_cancelled(self, msg_id: int) -> bool:
        """Return ``True`` if a C-CANCEL message with `msg_id` has been
        received.
        """
        return self.assoc.is_cancelled(msg_id)

    def is_valid_status(self, status: int) -> bool:
        """Return ``True`` if `status` is valid for the service class."""
        if status in self.statuses or status in GENERAL_STATUS:
            return True

        return code_to_category(status) != "Unknown"

    def SCP(self, req: DIMSEMessage) -> Iterator[DIMSEMessage]:
        """Yield the responses to the request `req` sent by the peer.

        Parameters
        ----------
        req : dimse_messages.DIMSEMessage
            The request message received from the peer.
        """
        raise NotImplementedError(
            f"No service class has been implemented for a {req.message_type} "
            "request"
        )

    def transfer_syntax(self, req: DIMSEMessage) -> str:
        """Return the transfer syntax used by the context of `req`."""
        context = self.assoc.get_context(req.context_id)
        return context.accepted_transfer_syntax

    def validate_status(self, status: StatusType, rsp: DIMSEMessage) -> DIMSEMessage:
        """Validate `status` and set the *Status* of `rsp` accordingly.

        Parameters
        ----------
        status : pydicom.dataset.Dataset or int
            A Dataset containing a Status element or an int.
        rsp : dimse_messages.DIMSEMessage
            The response to be sent to the peer.

        Returns
        -------
        dimse_messages.DIMSEMessage
            The response to be sent to the peer, containing a valid *Status*.
        """
        if isinstance(status, Dataset):
            if "Status" in status:
                # Set the allowed elements of the status dataset on the
                #   response
                for elem in status:
                    if elem.keyword in rsp.keywords and elem.keyword not in _MANAGED_KEYWORDS:
                        rsp[elem.keyword] = elem.value
                    else:
                        LOGGER.warning(
                            f"Status dataset returned by the handler contained "
                            f"an unsupported Element '{elem.keyword}'"
                        )
            else:
                LOGGER.error(
                    "The handler returned a `Dataset` without a Status element"
                )
                # Failure: Cannot Understand
                rsp["Status"] = 0xC001
        elif isinstance(status, int):
            rsp["Status"] = status
        else:
            LOGGER.error("Invalid status returned by the handler")
            # Failure: Cannot Understand
            rsp["Status"] = 0xC002

        if not self.is_valid_status(rsp.status):
            LOGGER.warning(
                f"Unknown status value returned by the handler - 0x{rsp.status:04X}"
            )

        return rsp

    def _wrap_handler(
        self, handler: Iterator
    ) -> Iterator[tuple[None, _ExcInfoType] | tuple[Any, None]]:
        """Wrap a generator handler to catch exceptions.

        Parameters
        ----------
        handler : generator
            A generator returned by a user's handler.

        Yields
        ------
        object or Exception, str
            The normal yields of the generator, unless an exception occurs
            within the generator in which case the exception info is yielded
            instead.
        """
        try:
            for result in handler:
                # Ensure we are still associated
                if not self.assoc.is_established:
                    LOGGER.debug("The association ended during the request handler")
                    return

                yield (result, None)
        except Exception:
            yield (None, sys.exc_info())


# Service Class implementations
class VerificationServiceClass(ServiceClass):
    """Implementation of the Verification Service Class."""

    def SCP(self, req: DIMSEMessage) -> Iterator[DIMSEMessage]:
        """The SCP implementation for the Verification Service Class.

        Will always return 0x0000 (Success) unless the user returns a different
        (valid) status value from the handler bound to `evt.EVT_C_ECHO`.
        """
        rsp = response_for(req)
        with attempt(rsp) as ctx:
            ctx.error_msg = "Exception in the handler bound to 'evt.EVT_C_ECHO'"
            status = evt.trigger(self.assoc, evt.EVT_C_ECHO, {"request": req})

        if ctx.success:
            rsp = self.validate_status(status, rsp)

        yield rsp


class StorageServiceClass(ServiceClass):
    """Implementation of the Storage Service Class."""

    uid = "1.2.840.10008.4.2"
    statuses = STORAGE_SERVICE_CLASS_STATUS

    def SCP(self, req: DIMSEMessage) -> Iterator[DIMSEMessage]:
        """The SCP implementation for the Storage Service Class.

        The handler bound to `evt.EVT_C_STORE` should return the status of
        the storage operation.
        """
        rsp = response_for(req)
        with attempt(rsp) as ctx:
            ctx.error_msg = "Exception in the handler bound to 'evt.EVT_C_STORE'"
            status = evt.trigger(self.assoc, evt.EVT_C_STORE, {"request": req})

        if ctx.success:
            rsp = self.validate_status(status, rsp)

        yield rsp


class QueryRetrieveServiceClass(ServiceClass):
    """Implementation of the Query/Retrieve Service Class.

    **C-FIND**

    The handler bound to `evt.EVT_C_FIND` yields ``(status, identifier)``
    for each match, with a *Pending* status, followed by an optional final
    status. The request may be cancelled by the peer while matches are being
    returned.

    **C-GET**

    The handler bound to `evt.EVT_C_GET` first yields the number of
    sub-operations, then ``(status, dataset)`` for each. Each *Pending*
    dataset is sent to the peer over the same association with a C-STORE
    sub-operation.

    **C-MOVE**

    The handler bound to `evt.EVT_C_MOVE` first yields the ``(addr, port)``
    of the *Move Destination*, or ``(None, None)`` if unknown, then the same
    as for C-GET. The sub-operations are sent over a new association with the
    move destination.
    """

    statuses = QR_SERVICE_CLASS_STATUS

    def SCP(self, req: DIMSEMessage) -> Iterator[DIMSEMessage]:
        """The SCP implementation for the Query/Retrieve Service Class."""
        if req.message_type == "C-FIND-RQ":
            return self._find_scp(req)

        if req.message_type == "C-GET-RQ":
            return self._get_scp(req)

        if req.message_type == "C-MOVE-RQ":
            return self._move_scp(req)

        raise ValueError(
            f"A {req.message_type} message is not supported by the "
            "Query/Retrieve Service Class"
        )

    def _find_scp(self, req: DIMSEMessage) -> Iterator[DIMSEMessage]:
        """Yield the responses to a C-FIND request."""
        transfer_syntax = self.transfer_syntax(req)
        rsp = response_for(req)
        with attempt(rsp) as ctx:
            ctx.error_msg = "Exception in the handler bound to 'evt.EVT_C_FIND'"
            generator = evt.trigger(self.assoc, evt.EVT_C_FIND, {"request": req})

        if not ctx.success:
            yield rsp
            return

        for result, exc_info in self._wrap_handler(generator):
            if exc_info:
                LOGGER.error("Exception in the handler bound to 'evt.EVT_C_FIND'")
                LOGGER.error(exc_info[1], exc_info=exc_info)
                yield response_for(req, Status.UNHANDLED_EXCEPTION)
                return

            if self.is_cancelled(req.message_id):
                LOGGER.info("Received C-CANCEL-FIND RQ from peer")
                yield response_for(req, Status.CANCEL)
                return

            status, identifier = result
            rsp = self.validate_status(status, response_for(req))
            category = code_to_category(rsp.status)
            if category != STATUS_PENDING:
                # Any other status ends the operation
                yield rsp
                return

            try:
                rsp.data_set = encode_for(identifier, transfer_syntax)
            except Exception as exc:
                LOGGER.error("Failed to encode the C-FIND response Identifier")
                LOGGER.exception(exc)
                yield response_for(
                    req, Status.UNABLE_TO_PROCESS, ErrorComment="Failed to encode Identifier"
                )
                return

            if _config.LOG_RESPONSE_IDENTIFIERS:
                LOGGER.info("Find SCP Response Identifier:")
                LOGGER.info("")
                for line in pretty_dataset(identifier):
                    LOGGER.info(line)
                LOGGER.info("")

            yield rsp

        if self.assoc.is_established:
            yield response_for(req, Status.SUCCESS)

    def _get_scp(self, req: DIMSEMessage) -> Iterator[DIMSEMessage]:
        """Yield the responses to a C-GET request."""
        rsp = response_for(req)
        with attempt(rsp) as ctx:
            ctx.error_msg = "Exception in the handler bound to 'evt.EVT_C_GET'"
            generator = evt.trigger(self.assoc, evt.EVT_C_GET, {"request": req})

        if not ctx.success:
            yield rsp
            return

        yield from self._retrieve(req, generator, self.assoc, None)

    def _move_scp(self, req: DIMSEMessage) -> Iterator[DIMSEMessage]:
        """Yield the responses to a C-MOVE request."""
        rsp = response_for(req)
        with attempt(rsp) as ctx:
            ctx.error_msg = "Exception in the handler bound to 'evt.EVT_C_MOVE'"
            generator = evt.trigger(self.assoc, evt.EVT_C_MOVE, {"request": req})
            destination = next(generator)
            addr, port = destination[:2]

        if not ctx.success:
            yield rsp
            return

        if addr is None:
            LOGGER.error(f"Unknown move destination '{req['MoveDestination']}'")
            yield response_for(req, Status.MOVE_DESTINATION_UNKNOWN)
            return

        kwargs = destination[2] if len(destination) > 2 else {}
        kwargs.setdefault("contexts", StoragePresentationContexts)
        try:
            store_assoc = self.ae.associate(
                addr, port, ae_title=req["MoveDestination"], **kwargs
            )
        except (NegotiationError, AssociationClosed) as exc:
            LOGGER.error(
                f"Unable to associate with the move destination "
                f"'{req['MoveDestination']}' at {addr}:{port}: {exc}"
            )
            # Refused: Out of Resources, Unable to Perform Sub-operations
            yield response_for(req, 0xA702)
            return

        try:
            yield from self._retrieve(req, generator, store_assoc, self.assoc.requestor.ae_title)
        finally:
            if store_assoc.is_established:
                store_assoc.release()

    def _retrieve(
        self,
        req: DIMSEMessage,
        generator: Iterator,
        store_assoc: "Association",
        originator_aet: str | None,
    ) -> Iterator[DIMSEMessage]:
        """Yield the responses to a C-GET or C-MOVE request.

        Parameters
        ----------
        req : dimse_messages.DIMSEMessage
            The C-GET or C-MOVE request.
        generator : generator
            The handler's generator, which yields the number of
            sub-operations and then ``(status, dataset)`` pairs.
        store_assoc : association.Association
            The association to send the C-STORE sub-operations on.
        originator_aet : str or None
            For C-MOVE, the AE title of the peer that sent the request.
        """
        name = "C-GET" if req.message_type == "C-GET-RQ" else "C-MOVE"
        transfer_syntax = self.transfer_syntax(req)
        failed_instances: list[str] = []
        counts = {
            "NumberOfRemainingSuboperations": 0,
            "NumberOfCompletedSuboperations": 0,
            "NumberOfFailedSuboperations": 0,
            "NumberOfWarningSuboperations": 0,
        }

        def _failed_identifier() -> bytes | None:
            if not failed_instances:
                return None

            ds = Dataset()
            ds.FailedSOPInstanceUIDList = failed_instances
            return encode_for(ds, transfer_syntax)

        def _final(status: int) -> DIMSEMessage:
            final = counts.copy()
            del final["NumberOfRemainingSuboperations"]
            return response_for(req, status, data_set=_failed_identifier(), **final)

        rsp = response_for(req)
        with attempt(rsp) as ctx:
            ctx.error_msg = f"The {name} handler yielded an invalid number of sub-operations"
            counts["NumberOfRemainingSuboperations"] = int(next(generator))

        if not ctx.success:
            yield rsp
            return

        for result, exc_info in self._wrap_handler(generator):
            if exc_info:
                LOGGER.error(f"Exception in the handler bound to 'evt.EVT_{name.replace('-', '_')}'")
                LOGGER.error(exc_info[1], exc_info=exc_info)
                yield _final(Status.UNHANDLED_EXCEPTION)
                return

            if self.is_cancelled(req.message_id):
                LOGGER.info(f"Received C-CANCEL-{name[2:]} RQ from peer")
                yield response_for(
                    req, Status.CANCEL, data_set=_failed_identifier(), **counts
                )
                return

            status, dataset = result
            rsp = self.validate_status(status, response_for(req))
            category = code_to_category(rsp.status)
            if category in (STATUS_CANCEL, STATUS_FAILURE, STATUS_WARNING, STATUS_SUCCESS):
                # The handler ended the operation
                for keyword, value in counts.items():
                    rsp[keyword] = value
                rsp.data_set = _failed_identifier()
                yield rsp
                return

            counts["NumberOfRemainingSuboperations"] -= 1
            try:
                store_rsp = store_assoc.send_c_store(
                    dataset,
                    originator_aet=originator_aet,
                    originator_id=req.message_id if originator_aet else None,
                )
                store_status = store_rsp.Status
            except ValueError as exc:
                LOGGER.error(f"Unable to send the {name} C-STORE sub-operation: {exc}")
                store_status = 0xA900
            except AssociationClosed:
                LOGGER.error(f"The association ended during the {name} sub-operations")
                return

            store_category = code_to_category(store_status)
            if store_category == STATUS_SUCCESS:
                counts["NumberOfCompletedSuboperations"] += 1
            elif store_category == STATUS_WARNING:
                counts["NumberOfWarningSuboperations"] += 1
            else:
                counts["NumberOfFailedSuboperations"] += 1
                failed_instances.append(getattr(dataset, "SOPInstanceUID", ""))

            yield response_for(req, Status.PENDING, **counts)

        if not self.assoc.is_established:
            return

        if counts["NumberOfFailedSuboperations"] or counts["NumberOfWarningSuboperations"]:
            # Sub-operations Complete, One or More Failures or Warnings
            yield _final(0xB000)
        else:
            yield _final(Status.SUCCESS)


_SERVICES: dict[str, type[ServiceClass]] = {
    "C-ECHO-RQ": VerificationServiceClass,
    "C-STORE-RQ": StorageServiceClass,
    "C-FIND-RQ": QueryRetrieveServiceClass,
    "C-GET-RQ": QueryRetrieveServiceClass,
    "C-MOVE-RQ": QueryRetrieveServiceClass,
}


def service_for(message: DIMSEMessage) -> type[ServiceClass] | None:
    """Return the service class that serves `message`, or ``None``."""
    return _SERVICES.get(message.message_type)
