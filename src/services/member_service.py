"""Service layer for the local copy of submitted registrations."""
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from models.fidelity_member import FidelityMember
from schemas.fidelity import FidelityCreate
from services.exceptions import MemberPersistenceError

logger = logging.getLogger(__name__)


async def save_member(
    db: AsyncSession,
    data: FidelityCreate,
    identity_code: str,
) -> FidelityMember:
    """
    Store and commit a submitted registration.

    The commit happens here, before the member is cached or emailed.

    Raises:
        MemberPersistenceError: If the row cannot be written.
    """
    member = FidelityMember(
        identity_code=identity_code,
        store=data.store,
        email=data.email,
        name=data.name,
        surname=data.surname,
        birth_date=data.birth_date,
        sex=data.sex,
        address=data.address,
        city=data.city,
        postal_code=data.postal_code,
        province=data.province,
        country=data.country,
        phone=data.phone,
    )
    db.add(member)
    try:
        await db.flush()
        await db.refresh(member)
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.exception("Failed to save member email=%s", data.email)
        raise MemberPersistenceError(data.email) from e
    logger.info("Saved member id=%d identity_code=%s", member.id, identity_code)
    return member
