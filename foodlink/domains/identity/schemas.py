from pydantic import BaseModel, Field


class OTPRequestIn(BaseModel):
    phone: str = Field(min_length=6, max_length=32)


class OTPRequestOut(BaseModel):
    request_id: str
    expires_in_seconds: int
    dev_otp: str | None = None


class OTPVerifyIn(BaseModel):
    request_id: str
    otp: str = Field(min_length=4, max_length=10)
    # Required on first login only.
    name: str | None = Field(default=None, max_length=128)
    user_type: str | None = Field(default=None, max_length=32)
    organization_name: str | None = Field(default=None, max_length=128)


class OTPVerifyOut(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user_id: str
    role: str


class UserOut(BaseModel):
    id: str
    name: str
    organization_name: str | None = None
    role: str


class DirectoryOut(BaseModel):
    users: list[UserOut]
