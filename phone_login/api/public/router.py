from fastapi import APIRouter
from phone_login.api.public import otp

router = APIRouter()
router.include_router(otp.router, prefix="/otp", tags=["Public"])
