from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.session import get_db
from app.services.rating_store import RatingStore


def get_rating_store(db: AsyncSession = Depends(get_db)) -> RatingStore:
    return RatingStore(db)
