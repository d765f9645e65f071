"""
Schemas for LearnHub

Document models mirror the MongoDB collections; the collection name is the
lowercase of the class name (e.g. MockTest -> "mock_test").
Request models accept the camelCase field names clients send.
"""
from datetime import datetime
from enum import Enum
from typing import Annotated, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, EmailStr, Field


class Role(str, Enum):
    USER = "USER"
    TEACHER = "TEACHER"
    ADMIN = "ADMIN"

    @classmethod
    def parse(cls, value) -> "Role":
        """Boundary parser: accepts any casing, raises ValueError otherwise."""
        if isinstance(value, Role):
            return value
        return cls(str(value).strip().upper())


class EnrollmentStatus(str, Enum):
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    DROPPED = "DROPPED"


def _role_field(value):
    if value is None or value == "":
        return None
    try:
        return Role.parse(value)
    except ValueError:
        raise ValueError("Invalid role selected")


OptionalRole = Annotated[Optional[Role], BeforeValidator(_role_field)]


# ----------------------
# Documents
# ----------------------
class Document(BaseModel):
    model_config = ConfigDict(use_enum_values=True)


class User(Document):
    name: str = Field(..., description="Full name")
    email: EmailStr = Field(..., description="Email address, stored lowercase")
    password_hash: str = Field(..., description="bcrypt hash")
    role: Role = Field(Role.USER, description="User role")
    age: Optional[int] = Field(None, ge=0)
    place: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class Course(Document):
    title: str
    description: str = ""
    category: str = ""
    price: float = Field(0, ge=0)
    teacher_id: str = Field(..., description="Owning teacher user id")
    created_at: datetime
    updated_at: datetime


class Video(Document):
    title: str
    link: str
    img: str = ""
    description: str = ""
    views: int = Field(0, ge=0)
    course_id: str
    created_at: datetime
    updated_at: datetime


class Enrollment(Document):
    user_id: str
    course_id: str
    progress: float = Field(0, ge=0, le=100)
    status: EnrollmentStatus = EnrollmentStatus.ACTIVE
    created_at: datetime


class MockTest(Document):
    title: str
    scheduled_at: datetime
    course_id: str
    created_at: datetime


class Certificate(Document):
    user_id: str
    course_id: str
    grade: str
    file_url: str = ""
    issued_at: datetime


# ----------------------
# Auth requests
# ----------------------
class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=1)
    role: OptionalRole = None
    age: Optional[int] = Field(None, ge=0)
    place: Optional[str] = None


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class UserUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    email: Optional[EmailStr] = None
    age: Optional[int] = Field(None, ge=0)
    place: Optional[str] = None
    role: OptionalRole = None


# ----------------------
# Catalog requests
# ----------------------
class CourseCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(..., min_length=1)
    description: str = ""
    category: str = ""
    price: float = Field(0, ge=0)
    teacher_id: Optional[str] = Field(None, alias="teacherId")


class CourseUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    category: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    teacher_id: Optional[str] = Field(None, alias="teacherId")


class VideoCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(..., min_length=1)
    link: str = Field(..., min_length=1)
    course_id: str = Field(..., alias="courseId")
    img: Optional[str] = None
    description: str = ""
    views: int = Field(0, ge=0)


class VideoUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1)
    link: Optional[str] = Field(None, min_length=1)
    img: Optional[str] = None
    description: Optional[str] = None
    views: Optional[int] = Field(None, ge=0)


# ----------------------
# Learning requests
# ----------------------
class MockTestCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(..., min_length=1)
    scheduled_at: datetime = Field(..., alias="scheduledAt")


class AttemptCreate(BaseModel):
    score: float = Field(..., ge=0)


class CertificateIssue(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="userId")
    grade: str = Field(..., min_length=1)
    file_url: str = Field("", alias="fileUrl")
