from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, Optional


class OtpSend(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    phone_number: Optional[str] = Field(default=None, alias="phoneNumber")


class OtpSent(BaseModel):
    success: bool = True
    message: str = "OTP sent successfully"
    expires_in: int = Field(serialization_alias="expiresIn")


class OtpVerify(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    phone_number: Optional[str] = Field(default=None, alias="phoneNumber")
    otp: Optional[str] = None


class OtpVerified(BaseModel):
    success: bool = True
    message: str = "OTP verified successfully"
    session: Dict[str, Any]
