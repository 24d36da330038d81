"""Recipient resolver - expand a matched event into the people to remind."""

import asyncio
import logging
from typing import Protocol

from .enums import RecipientRole
from .errors import ResolutionIncomplete, StoreUnavailable
from .types import Identity, Recipient, ScheduledEvent

logger = logging.getLogger(__name__)


class IdentityDirectory(Protocol):
    async def resolve_identity(self, identity_id: str) -> Identity | None: ...


class RecipientResolver:
    def __init__(self, directory: IdentityDirectory):
        self._directory = directory

    async def _lookup(self, identity_id: str) -> Identity | None:
        try:
            return await self._directory.resolve_identity(identity_id)
        except StoreUnavailable:
            raise
        except Exception as e:
            raise StoreUnavailable(f"Identity lookup failed for {identity_id}: {e}") from e

    async def resolve(self, event: ScheduledEvent) -> list[Recipient]:
        """
        Build the owner and participant recipients for an event.

        Participants that can't be resolved are skipped with a warning. Missing
        phone/email is fine; that recipient is just ineligible for the channel.

        Raises:
            ResolutionIncomplete: The owner can't be resolved (or has no name);
                every message needs the owner's name, so the event is skipped
            StoreUnavailable: The identity directory could not be reached
        """
        if not event.owner_id:
            raise ResolutionIncomplete(f"Event {event.event_id} has no owner")

        participant_ids = [
            pid for pid in dict.fromkeys(event.participant_ids) if pid != event.owner_id
        ]
        owner, *participants = await asyncio.gather(
            self._lookup(event.owner_id),
            *(self._lookup(pid) for pid in participant_ids),
        )

        if owner is None or not owner.name.strip():
            raise ResolutionIncomplete(
                f"Owner {event.owner_id} of event {event.event_id} could not be resolved"
            )
        owner_name = owner.name.strip()

        recipients: list[Recipient] = []
        for pid, identity in zip(participant_ids, participants):
            if identity is None:
                logger.warning(
                    f"Participant {pid} of event {event.event_id} not found, skipping"
                )
                continue
            recipients.append(
                Recipient(
                    role=RecipientRole.participant,
                    identity_id=identity.identity_id,
                    display_name=identity.name.strip(),
                    event=event,
                    counterpart_name=owner_name,
                    phone=identity.phone,
                    email=identity.email,
                )
            )

        participant_names = [r.display_name for r in recipients if r.display_name]
        recipients.insert(
            0,
            Recipient(
                role=RecipientRole.owner,
                identity_id=owner.identity_id,
                display_name=owner_name,
                event=event,
                counterpart_name=", ".join(participant_names) or event.title,
                phone=owner.phone,
                email=owner.email,
            ),
        )
        return recipients
