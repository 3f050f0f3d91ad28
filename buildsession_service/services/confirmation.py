import logging

from ..models.transcript import PendingAction, Transcript
from .platform_client import PlatformError

logger = logging.getLogger(__name__)

APPROVED_MESSAGE = "Action approved. Executing..."
REJECTED_MESSAGE = "Action rejected."


class ConfirmationError(Exception):
    """A confirmation was attempted without an open, unresolved pending action."""


class ConfirmationGate:
    """Single slot for the sensitive action the agent is waiting on."""

    def __init__(self, client, app_id: str, identity_store, transcript: Transcript, reconciler):
        self.client = client
        self.app_id = app_id
        self.identity_store = identity_store
        self.transcript = transcript
        self.reconciler = reconciler
        self.pending: PendingAction | None = None
        self._resolving = False

    @property
    def awaiting(self) -> bool:
        """True while approve/reject should be offered."""
        return self.pending is not None and not self.pending.resolved

    def request(self, action_id: str, tool_name: str | None) -> PendingAction:
        """Open the slot for a new action; an older one, resolved or not, is replaced."""
        if self.awaiting:
            logger.warning(
                "Confirmation for %s replaced by %s before it was resolved",
                self.pending.action_id, action_id,
            )
        self.pending = PendingAction(action_id=action_id, tool_name=tool_name)
        return self.pending

    async def resolve(self, approved: bool) -> PendingAction:
        pending = self.pending
        if pending is None:
            raise ConfirmationError("No action is waiting for confirmation")
        if pending.resolved:
            raise ConfirmationError(f"Action {pending.action_id} is already resolved")
        if self._resolving:
            raise ConfirmationError(f"Action {pending.action_id} is already being resolved")
        session_id = await self.identity_store.get()
        if not session_id:
            raise ConfirmationError("No agent session is established")

        self._resolving = True
        try:
            await self.client.confirm_action(self.app_id, session_id, pending.action_id, approved)
        except PlatformError as e:
            logger.warning("Confirmation of %s failed: %s", pending.action_id, e)
            self.transcript.append("assistant", f"Failed to process confirmation: {e}")
            raise
        finally:
            self._resolving = False

        pending.resolved = True
        self.transcript.append("assistant", APPROVED_MESSAGE if approved else REJECTED_MESSAGE)
        logger.info("Action %s %s", pending.action_id, "approved" if approved else "rejected")
        if approved:
            await self.reconciler.refresh_all()
        return pending

    def reset(self):
        self.pending = None
