from fastapi import APIRouter, status

router = APIRouter()


@router.get("/healthz")
def get_healthz() -> int:
    """Health check endpoint. Always returns 200."""
    return status.HTTP_200_OK
