from fastapi import APIRouter
from app.api import queries
from app.api import messages
from app.api import calls

router = APIRouter()


@router.get("/health")
async def health():
    return {"status": "ok"}


# Include queries, messages, calls routers
router.include_router(queries.router)
router.include_router(messages.router)
router.include_router(calls.router)
