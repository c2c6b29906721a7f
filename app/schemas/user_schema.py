from pydantic import BaseModel, EmailStr, Field, model_validator
from typing import Optional
from datetime import datetime
from fastapi import Form
import uuid


class LoginForm(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)
    remember_me: bool = False

    @classmethod
    def as_form(
        cls,
        email: str = Form(...),
        password: str = Form(...),
        remember_me: bool = Form(False),
    ):
        return cls(email=email, password=password, remember_me=remember_me)


class ForgotPasswordForm(BaseModel):
    email: EmailStr

    @classmethod
    def as_form(cls, email: str = Form(...)):
        return cls(email=email)


class _NewPasswordMixin(BaseModel):
    new_password: str = Field(min_length=8)
    confirm_password: str

    @model_validator(mode="after")
    def passwords_match(self):
        if self.new_password != self.confirm_password:
            raise ValueError("Passwords do not match.")
        return self


class ResetPasswordForm(_NewPasswordMixin):
    token_id: uuid.UUID
    token: str = Field(min_length=1)

    @classmethod
    def as_form(
        cls,
        token_id: str = Form(...),
        token: str = Form(...),
        new_password: str = Form(...),
        confirm_password: str = Form(...),
    ):
        return cls(
            token_id=token_id,
            token=token,
            new_password=new_password,
            confirm_password=confirm_password,
        )


class ChangePasswordForm(_NewPasswordMixin):
    current_password: str = Field(min_length=1)

    @classmethod
    def as_form(
        cls,
        current_password: str = Form(...),
        new_password: str = Form(...),
        confirm_password: str = Form(...),
    ):
        return cls(
            current_password=current_password,
            new_password=new_password,
            confirm_password=confirm_password,
        )


class UserRead(BaseModel):
    id: str
    email: str
    full_name: Optional[str] = None
    created_at: datetime
