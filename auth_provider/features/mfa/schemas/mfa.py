from typing import Optional

from pydantic import BaseModel, Field


class SendVerificationRequest(BaseModel):
    email: str
    callback_url: Optional[str] = Field(default=None, alias="callbackUrl")


class VerifyEmailRequest(BaseModel):
    email: str
    code: str


class SuccessResponse(BaseModel):
    success: bool = True


class SignedInUser(BaseModel):
    id: int
    email: str
    f3_name: Optional[str] = Field(default=None, alias="f3Name")


class VerifyEmailResponse(SuccessResponse):
    access_token: str = Field(alias="accessToken")
    token_type: str = Field(default="Bearer", alias="tokenType")
    is_new_user: bool = Field(alias="isNewUser")
    user: SignedInUser


class ErrorResponse(BaseModel):
    error: str


ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}
