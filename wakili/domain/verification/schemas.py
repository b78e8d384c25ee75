from pydantic import BaseModel, Field


class SendCodeRequest(BaseModel):
    phone_number: str = Field(min_length=9, max_length=20)


class SendCodeResponse(BaseModel):
    phone_number: str
    expires_in_seconds: int


class VerifyCodeRequest(BaseModel):
    code: str = Field(min_length=6, max_length=6)


class VerifyCodeResponse(BaseModel):
    phone_number: str
    verified: bool
