"""
Signature repository (read side used by export and dispatch)
"""

from datetime import datetime
from typing import Iterator, List, Optional

from sqlalchemy import and_, func, or_, select
from sqlalchemy.orm import Session

from ..models.signature import Signature
from ..models.user import User


def count_for_owner(db: Session, owner_id: int) -> int:
    return db.scalar(select(func.count(Signature.id)).where(Signature.user_id == owner_id)) or 0


def max_id_for_owner(db: Session, owner_id: int) -> Optional[int]:
    return db.scalar(select(func.max(Signature.id)).where(Signature.user_id == owner_id))


def page_for_owner(
    db: Session,
    owner_id: int,
    limit: int,
    after_created_at: Optional[datetime] = None,
    after_id: Optional[int] = None,
    max_id: Optional[int] = None,
) -> List[Signature]:
    """
    Next page of an owner's signatures in (created_at, id) order.

    Keyset pagination: the page starts strictly after the given cursor, so rows
    deleted from earlier pages do not shift later ones.
    """
    stmt = select(Signature).where(Signature.user_id == owner_id)
    if max_id is not None:
        stmt = stmt.where(Signature.id <= max_id)
    if after_id is not None:
        stmt = stmt.where(or_(
            Signature.created_at > after_created_at,
            and_(Signature.created_at == after_created_at, Signature.id > after_id),
        ))
    stmt = stmt.order_by(Signature.created_at.asc(), Signature.id.asc()).limit(limit)
    return list(db.scalars(stmt))


def iter_newest_first(db: Session, owner_id: int) -> Iterator[Signature]:
    stmt = (
        select(Signature)
        .where(Signature.user_id == owner_id)
        .order_by(Signature.created_at.desc(), Signature.id.desc())
        .execution_options(yield_per=200)
    )
    yield from db.scalars(stmt)


def get_signature(db: Session, signature_id: int) -> Optional[Signature]:
    return db.get(Signature, signature_id)


def owner_display_name(db: Session, owner_id: int) -> str:
    user = db.get(User, owner_id)
    return user.display_name if user else "user"
