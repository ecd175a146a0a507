"""
Contact Service - a subject's emergency contact list
"""
from typing import List
import logging

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from tourist_safety.models.emergency_models import EmergencyContact
from tourist_safety.models.schemas.emergency_schemas import EmergencyContactIn

logger = logging.getLogger(__name__)


class ContactService:
    """Reads and replaces emergency contact lists"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_contacts(self, subject_id: str) -> List[EmergencyContact]:
        """Contacts ordered by priority (lowest number first)"""
        result = await self.db.execute(
            select(EmergencyContact)
            .where(EmergencyContact.subject_id == subject_id)
            .order_by(EmergencyContact.priority, EmergencyContact.id)
        )
        return list(result.scalars().all())

    async def replace_contacts(self, subject_id: str, contacts: List[EmergencyContactIn]) -> List[EmergencyContact]:
        """
        Replace the subject's whole contact list in one transaction
        """
        await self.db.execute(
            delete(EmergencyContact).where(EmergencyContact.subject_id == subject_id)
        )
        self.db.add_all([
            EmergencyContact(subject_id=subject_id, **contact.model_dump())
            for contact in contacts
        ])
        await self.db.commit()

        logger.info(f"Replaced emergency contacts for {subject_id}: {len(contacts)} contact(s)")
        return await self.list_contacts(subject_id)
