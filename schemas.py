import datetime as dt
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictFloat, StrictInt, StrictStr

HEX_COLOR_PATTERN = r"^#[0-9A-Fa-f]{6}$"

# "12,50", "$3" and plain JSON numbers; money.parse_amount does the parsing
AmountInput = Union[StrictStr, StrictInt, StrictFloat]


class SignupIn(BaseModel):
    first_name: str = Field(..., max_length=100)
    last_name: str = Field(..., max_length=100)
    email: str = Field(..., max_length=255)
    password: str = Field(..., max_length=72)
    confirm_password: str = Field(..., max_length=72)
    contact_number: Optional[str] = Field(default=None, max_length=40)


class LoginIn(BaseModel):
    email: str = Field(..., max_length=255)
    password: str = Field(..., max_length=72)


class ProfileIn(BaseModel):
    first_name: str = Field(..., max_length=100)
    last_name: str = Field(..., max_length=100)
    email: str = Field(..., max_length=255)
    old_password: Optional[str] = Field(default=None, max_length=72)
    new_password: Optional[str] = Field(default=None, max_length=72)
    profile_image: Optional[str] = Field(default=None, max_length=500)


class CategoryIn(BaseModel):
    name: str = Field(..., max_length=100)
    emoji: Optional[str] = Field(default=None, max_length=16)
    color: Optional[str] = Field(default=None, pattern=HEX_COLOR_PATTERN)


class CategoryUpdateIn(BaseModel):
    name: Optional[str] = Field(default=None, max_length=100)
    emoji: Optional[str] = Field(default=None, max_length=16)
    color: Optional[str] = Field(default=None, pattern=HEX_COLOR_PATTERN)


class ExpenseIn(BaseModel):
    amount: AmountInput
    date: dt.date
    category: str = Field(..., max_length=100)
    emoji: Optional[str] = Field(default=None, max_length=16)
    description: str = Field(..., max_length=200)


class ExpenseUpdateIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    amount: Optional[AmountInput] = None
    date: Optional[dt.date] = None
    category: Optional[str] = Field(default=None, max_length=100)
    emoji: Optional[str] = Field(default=None, max_length=16)
    description: Optional[str] = Field(default=None, max_length=200)
