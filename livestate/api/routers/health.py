from fastapi import APIRouter

from livestate.api.utils import ApiSuccess

router = APIRouter()


@router.get("/health", response_model=ApiSuccess)
async def health():
    return ApiSuccess(results="OK")
