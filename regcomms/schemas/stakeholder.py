"""Stakeholder directory schemas."""

import uuid

from pydantic import BaseModel, ConfigDict, Field

from regcomms.models.stakeholder import CommunicationChannel, StakeholderRole, StakeholderType

# Phone numbers are interchangeable between voice and text
_CONTACT_FALLBACKS: dict[CommunicationChannel, CommunicationChannel] = {
    CommunicationChannel.SMS: CommunicationChannel.PHONE,
    CommunicationChannel.PHONE: CommunicationChannel.SMS,
}


class StakeholderInfo(BaseModel):
    """Stakeholder as returned by the directory."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    role: StakeholderRole
    stakeholder_type: StakeholderType = StakeholderType.INTERNAL
    organization: str | None = None
    contacts: dict[str, str] = Field(default_factory=dict)
    is_active: bool = True

    def contact_for(self, channel: CommunicationChannel) -> str | None:
        """Address for a channel, or None when the stakeholder has none."""
        address = self.contacts.get(channel.value)
        if address:
            return address
        fallback = _CONTACT_FALLBACKS.get(channel)
        if fallback is not None:
            return self.contacts.get(fallback.value) or None
        return None

