"""
ACSE service provider: association negotiation for both the requestor and
the acceptor.
"""

import logging
from typing import TYPE_CHECKING

from dimsenet._globals import APPLICATION_CONTEXT_NAME, PROTOCOL_VERSION
from dimsenet.events import AssociationDecision
from dimsenet.exceptions import NegotiationError
from dimsenet.pdu import A_ASSOCIATE_AC, A_ASSOCIATE_RJ, A_ASSOCIATE_RQ
from dimsenet.pdu_items import (
    AsynchronousOperationsWindowSubItem,
    ImplementationClassUIDSubItem,
    ImplementationVersionNameSubItem,
    MaximumLengthSubItem,
    SCP_SCU_RoleSelectionSubItem,
    UserInformationItem,
)
from dimsenet.presentation import (
    PresentationContext,
    negotiate,
    negotiate_as_requestor,
)

if TYPE_CHECKING:  # pragma: no cover
    from dimsenet.association import Association, ServiceUser


LOGGER = logging.getLogger(__name__)


# A-ASSOCIATE-RJ (result, source, reason) values used by the acceptor
REJECT_LOCAL_LIMIT = (0x02, 0x03, 0x02)
REJECT_APPLICATION_CONTEXT = (0x01, 0x01, 0x02)
REJECT_PROTOCOL_VERSION = (0x01, 0x02, 0x02)
REJECT_CALLED_AET = (0x01, 0x01, 0x07)
REJECT_CALLING_AET = (0x01, 0x01, 0x03)
REJECT_NO_REASON = (0x01, 0x01, 0x01)
REJECT_PROVIDER_NO_REASON = (0x01, 0x02, 0x01)


def min_nonzero(first: int, second: int) -> int:
    """Return the smaller of two operation limits where ``0`` is unlimited."""
    if first == 0:
        return second

    if second == 0:
        return first

    return min(first, second)


def build_user_information(user: "ServiceUser") -> UserInformationItem:
    """Return the User Information item for the local service `user`.

    The Asynchronous Operations Window sub-item is only added when the limits
    aren't the default of 1 invoked and 1 performed.
    """
    item = UserInformationItem()
    item.user_data.append(MaximumLengthSubItem(user.maximum_length))
    item.user_data.append(ImplementationClassUIDSubItem(user.implementation_class_uid))
    if user.asynchronous_operations != (1, 1):
        item.user_data.append(
            AsynchronousOperationsWindowSubItem(*user.asynchronous_operations)
        )

    for uid, (scu, scp) in user.role_selection.items():
        item.user_data.append(SCP_SCU_RoleSelectionSubItem(uid, scu, scp))

    if user.implementation_version_name:
        item.user_data.append(
            ImplementationVersionNameSubItem(user.implementation_version_name)
        )

    item.user_data.extend(user.extended_negotiation)

    return item


class ACSE:
    """The Association Control Service Element for one association.

    Attributes
    ----------
    assoc : association.Association
        The association the ACSE is negotiating.
    """

    def __init__(self, assoc: "Association") -> None:
        self.assoc = assoc

    @property
    def acceptor(self) -> "ServiceUser":
        """Return the *acceptor* :class:`~dimsenet.association.ServiceUser`."""
        return self.assoc.acceptor

    @property
    def requestor(self) -> "ServiceUser":
        """Return the *requestor* :class:`~dimsenet.association.ServiceUser`."""
        return self.assoc.requestor

    # Requestor
    def build_request(self) -> A_ASSOCIATE_RQ:
        """Return the A-ASSOCIATE-RQ for the requestor's proposed contexts.

        The proposed contexts are assigned odd context IDs in the order
        they were added, starting at 1.

        Raises
        ------
        ValueError
            If no contexts have been proposed or there are more than 128.
        """
        contexts = self.requestor.requested_contexts
        if not contexts:
            raise ValueError(
                "At least one presentation context must be proposed to "
                "request an association"
            )

        if len(contexts) > 128:
            raise ValueError(
                f"No more than 128 presentation contexts may be proposed, "
                f"not {len(contexts)}"
            )

        for ii, context in enumerate(contexts):
            context.context_id = 2 * ii + 1

        return A_ASSOCIATE_RQ.build(
            self.acceptor.ae_title,
            self.requestor.ae_title,
            contexts,
            build_user_information(self.requestor),
        )

    def process_accept(self, pdu: A_ASSOCIATE_AC) -> bool:
        """Apply the acceptor's A-ASSOCIATE-AC to the association.

        Returns
        -------
        bool
            ``True`` if at least one presentation context was accepted. If
            none were accepted then the association is marked as rejected
            with a :class:`~dimsenet.exceptions.NegotiationError`.
        """
        self._update_peer(self.acceptor, pdu.user_information)

        contexts = negotiate_as_requestor(
            self.requestor.requested_contexts, pdu.presentation_context
        )
        self.assoc._contexts = contexts

        # Absent means the default of 1 invoked and 1 performed
        async_ops = self.acceptor.asynchronous_operations
        self.assoc._operations_limits = async_ops

        self.assoc._roles = dict(self.acceptor.role_selection)

        accepted = [cx for cx in contexts if cx.is_accepted]
        if accepted:
            LOGGER.info("Association Accepted")
            return True

        LOGGER.error("No accepted presentation contexts")
        self.assoc._reject(
            NegotiationError(
                "The association was accepted but none of the proposed "
                "presentation contexts were accepted",
                contexts=contexts,
            )
        )

        return False

    def process_reject(self, pdu: A_ASSOCIATE_RJ) -> None:
        """Apply the acceptor's A-ASSOCIATE-RJ to the association."""
        LOGGER.error(f"Association Rejected: {pdu.result_str}")
        LOGGER.error(f"  Source: {pdu.source_str}")
        LOGGER.error(f"  Reason: {pdu.reason_str}")
        self.assoc._reject(
            NegotiationError(
                f"Association rejected: {pdu.reason_str}",
                result=pdu.result,
                source=pdu.source,
                reason=pdu.reason_diagnostic,
                contexts=[
                    PresentationContext(
                        cx.context_id, cx.abstract_syntax, cx.transfer_syntax[:1], 0x02
                    )
                    for cx in self.requestor.requested_contexts
                ],
            )
        )

    # Acceptor
    def negotiate_request(self, pdu: A_ASSOCIATE_RQ) -> A_ASSOCIATE_AC | A_ASSOCIATE_RJ:
        """Negotiate the A-ASSOCIATE-RQ received from the requestor.

        The association level checks are performed first, in order: the
        maximum number of associations, the application context, the protocol
        version and the called and calling AE titles. The presentation
        contexts are then negotiated using the AE's policy and finally the
        application sink is asked for its decision.

        Returns
        -------
        pdu.A_ASSOCIATE_AC or pdu.A_ASSOCIATE_RJ
            The reply to send to the requestor.
        """
        ae = self.assoc.ae
        self.requestor.ae_title = pdu.calling_ae_title
        self.acceptor.ae_title = pdu.called_ae_title
        self._update_peer(self.requestor, pdu.user_information)

        rejection = self._check_association(pdu)
        if rejection:
            return self._reject(*rejection)

        try:
            proposed = [item.to_context() for item in pdu.presentation_context]
        except ValueError as exc:
            LOGGER.error(f"Invalid presentation context in the A-ASSOCIATE-RQ: {exc}")
            return self._reject(*REJECT_PROVIDER_NO_REASON)

        contexts = negotiate(proposed, ae.context_policy)
        self.assoc._contexts = contexts
        self._negotiate_async_ops()
        roles = self._negotiate_roles(contexts)

        try:
            decision = self.assoc.sink.on_incoming_association(self.assoc, pdu)
        except Exception as exc:
            LOGGER.error("Exception raised by the sink's 'on_incoming_association'")
            LOGGER.exception(exc)
            decision = AssociationDecision(*REJECT_NO_REASON)

        if decision is not None:
            return self._reject(decision.result, decision.source, decision.reason)

        user_info = UserInformationItem()
        user_info.user_data.append(MaximumLengthSubItem(self.acceptor.maximum_length))
        user_info.user_data.append(
            ImplementationClassUIDSubItem(self.acceptor.implementation_class_uid)
        )
        # Only reply to an Asynchronous Operations Window proposal
        if pdu.user_information and pdu.user_information.async_ops_window:
            user_info.user_data.append(
                AsynchronousOperationsWindowSubItem(*self.assoc._operations_limits)
            )

        user_info.user_data.extend(roles)
        if self.acceptor.implementation_version_name:
            user_info.user_data.append(
                ImplementationVersionNameSubItem(self.acceptor.implementation_version_name)
            )

        LOGGER.info("Accepting Association")
        return A_ASSOCIATE_AC.build(pdu, contexts, user_info)

    def _check_association(self, pdu: A_ASSOCIATE_RQ) -> tuple[int, int, int] | None:
        """Return the rejection (result, source, reason) for `pdu`, if any."""
        ae = self.assoc.ae
        server = self.assoc.server
        if server is not None:
            acceptors = [
                assoc for assoc in server.active_associations if assoc.is_acceptor
            ]
            if len(acceptors) > ae.maximum_associations:
                LOGGER.warning("Maximum number of associations exceeded")
                return REJECT_LOCAL_LIMIT

        if pdu.application_context_name != APPLICATION_CONTEXT_NAME:
            LOGGER.error(
                f"Application context name not supported: "
                f"'{pdu.application_context_name}'"
            )
            return REJECT_APPLICATION_CONTEXT

        if not pdu.protocol_version & PROTOCOL_VERSION:
            LOGGER.error(f"Protocol version not supported: {pdu.protocol_version}")
            return REJECT_PROTOCOL_VERSION

        if ae.require_called_aet and pdu.called_ae_title != ae.ae_title:
            LOGGER.error(
                f"Called AE title not recognised: '{pdu.called_ae_title}'"
            )
            return REJECT_CALLED_AET

        if ae.require_calling_aet and pdu.calling_ae_title not in ae.require_calling_aet:
            LOGGER.error(
                f"Calling AE title not recognised: '{pdu.calling_ae_title}'"
            )
            return REJECT_CALLING_AET

        return None

    def _negotiate_async_ops(self) -> None:
        """Set the negotiated operation limits as the acceptor.

        The requestor's invoked limit is bounded by the number of operations
        the acceptor can perform and vice versa.
        """
        rq_invoked, rq_performed = self.requestor.asynchronous_operations
        local_invoked, local_performed = self.acceptor.asynchronous_operations
        self.assoc._operations_limits = (
            min_nonzero(rq_invoked, local_performed),
            min_nonzero(rq_performed, local_invoked),
        )

    def _negotiate_roles(
        self, contexts: list[PresentationContext]
    ) -> list[SCP_SCU_RoleSelectionSubItem]:
        """Return the SCP/SCU Role Selection reply items.

        Proposed roles are accepted for the abstract syntaxes with an
        accepted presentation context.
        """
        accepted = {cx.abstract_syntax for cx in contexts if cx.is_accepted}
        items = []
        roles = {}
        for uid, (scu, scp) in self.requestor.role_selection.items():
            if uid not in accepted:
                continue

            roles[uid] = (scu, scp)
            items.append(SCP_SCU_RoleSelectionSubItem(uid, scu, scp))

        self.assoc._roles = roles

        return items

    def _reject(self, result: int, source: int, reason: int) -> A_ASSOCIATE_RJ:
        pdu = A_ASSOCIATE_RJ(result, source, reason)
        LOGGER.info(f"Rejecting Association: {pdu.reason_str}")
        self.assoc._reject(
            NegotiationError(
                f"Association rejected: {pdu.reason_str}",
                result=result,
                source=source,
                reason=reason,
                contexts=self.assoc._contexts,
            )
        )

        return pdu

    @staticmethod
    def _update_peer(user: "ServiceUser", user_info: UserInformationItem | None) -> None:
        """Set the peer's negotiation parameters from its User Information."""
        if user_info is None:
            LOGGER.warning("No User Information item received from the peer")
            return

        if user_info.maximum_length is not None:
            user.maximum_length = user_info.maximum_length

        user.implementation_class_uid = user_info.implementation_class_uid
        user.implementation_version_name = user_info.implementation_version_name

        async_ops = user_info.async_ops_window
        if async_ops is not None:
            user.asynchronous_operations = (
                async_ops.maximum_number_operations_invoked,
                async_ops.maximum_number_operations_performed,
            )
        else:
            user.asynchronous_operations = (1, 1)

        user.role_selection = {
            uid: (item.scu_role, item.scp_role)
            for uid, item in user_info.role_selection.items()
        }
        user.extended_negotiation = list(user_info.ext_neg)
