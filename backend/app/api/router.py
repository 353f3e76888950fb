from fastapi import APIRouter
from app.modules.ratings import api as ratings

router = APIRouter()
router.include_router(ratings.router, tags=["ratings"])
