"""
Credential store and user management.
"""
import logging
import re
from typing import List, Optional

from passlib.hash import bcrypt
from pymongo import DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from config import Settings
from database import Database, oid, utcnow
from errors import (
    AuthenticationError,
    ConflictError,
    UserNotFoundError,
    ValidationError,
)
from policy import Action, Caller, Resource, authorize
from schemas import RegisterRequest, Role, User, UserUpdate
from tokens import TokenClaims

logger = logging.getLogger(__name__)

OWNER_ROLES = (Role.TEACHER.value, Role.ADMIN.value)


class UserService:
    def __init__(self, db: Database, settings: Settings):
        self.db = db
        self._hasher = bcrypt.using(rounds=settings.BCRYPT_ROUNDS)

    # ----------------------
    # Credentials
    # ----------------------
    def hash_password(self, password: str) -> str:
        return self._hasher.hash(password)

    def verify_password(self, password: str, password_hash: str) -> bool:
        if not password_hash:
            return False
        try:
            return self._hasher.verify(password, password_hash)
        except ValueError:
            # not a bcrypt hash
            return False

    def register(self, payload: RegisterRequest) -> dict:
        role = payload.role or Role.USER
        if role == Role.ADMIN:
            raise ValidationError("Cannot self-register as admin")
        now = utcnow()
        doc = User(
            name=payload.name.strip(),
            email=payload.email.lower(),
            password_hash=self.hash_password(payload.password),
            role=role,
            age=payload.age,
            place=payload.place,
            created_at=now,
            updated_at=now,
        ).model_dump()
        try:
            res = self.db.users.insert_one(doc)
        except DuplicateKeyError:
            raise ConflictError("User already exists")
        doc["_id"] = res.inserted_id
        logger.info("Registered user %s with role %s", doc["_id"], doc["role"])
        return doc

    def authenticate(self, email: str, password: str) -> dict:
        user = self.db.users.find_one({"email": email.lower()})
        if not user or not self.verify_password(password, user.get("password_hash", "")):
            raise AuthenticationError("Invalid credentials")
        return user

    def resolve_identity(self, claims: TokenClaims) -> dict:
        """Load the caller's current row, by id when the token has one, else by email."""
        if claims.subject:
            user = self.db.users.find_one({"_id": oid(claims.subject, UserNotFoundError)})
        elif claims.email:
            user = self.db.users.find_one({"email": claims.email.lower()})
        else:
            raise AuthenticationError()
        if not user:
            raise UserNotFoundError()
        return user

    def ensure_admin(self, settings: Settings) -> None:
        email = settings.ADMIN_EMAIL.lower()
        if self.db.users.find_one({"email": email}):
            return
        now = utcnow()
        doc = User(
            name=settings.ADMIN_NAME,
            email=email,
            password_hash=self.hash_password(settings.ADMIN_PASSWORD),
            role=Role.ADMIN,
            created_at=now,
            updated_at=now,
        ).model_dump()
        try:
            self.db.users.insert_one(doc)
        except DuplicateKeyError:
            # another worker seeded it first
            return
        logger.info("Seeded admin account %s", email)

    # ----------------------
    # Management
    # ----------------------
    def get_user(self, user_id: str) -> dict:
        user = self.db.users.find_one({"_id": oid(user_id, UserNotFoundError)})
        if not user:
            raise UserNotFoundError()
        return user

    def read_user(self, caller: Caller, user_id: str) -> dict:
        authorize(caller, Action.USER_READ)
        return self.get_user(user_id)

    def list_users(self, caller: Caller, search: str = "", role: str = "") -> List[dict]:
        authorize(caller, Action.USER_LIST)
        q: dict = {}
        if search:
            pattern = {"$regex": re.escape(search), "$options": "i"}
            q["$or"] = [{"name": pattern}, {"email": pattern}]
        if role:
            try:
                q["role"] = Role.parse(role).value
            except ValueError:
                raise ValidationError("Invalid role selected")
        cursor = self.db.users.find(q, {"password_hash": 0}).sort([("created_at", DESCENDING), ("_id", DESCENDING)])
        return list(cursor)

    def owns_courses(self, user_id: str) -> bool:
        return self.db.courses.find_one({"teacher_id": user_id}, {"_id": 1}) is not None

    def update_user(self, caller: Caller, user_id: str, update: UserUpdate) -> dict:
        authorize(caller, Action.USER_UPDATE, Resource(owner_id=user_id))
        target = self.get_user(user_id)

        data = {}
        if update.name is not None:
            data["name"] = update.name.strip()
        if update.email is not None:
            data["email"] = update.email.lower()
            if self.db.users.find_one({"email": data["email"], "_id": {"$ne": target["_id"]}}, {"_id": 1}):
                raise ConflictError("Email already in use")
        if update.age is not None:
            data["age"] = update.age
        if update.place is not None:
            data["place"] = update.place
        if update.role is not None:
            authorize(caller, Action.USER_CHANGE_ROLE)
            if update.role.value not in OWNER_ROLES and self.owns_courses(user_id):
                raise ConflictError("User still owns courses; reassign them before changing role")
            data["role"] = update.role.value

        if not data:
            return target
        data["updated_at"] = utcnow()
        try:
            updated = self.db.users.find_one_and_update(
                {"_id": target["_id"]},
                {"$set": data},
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError:
            raise ConflictError("Email already in use")
        if not updated:
            raise UserNotFoundError()
        return updated

    def delete_user(self, caller: Caller, user_id: str) -> None:
        authorize(caller, Action.USER_DELETE)
        target = self.get_user(user_id)
        if self.owns_courses(user_id):
            raise ConflictError("User still owns courses; reassign or delete them first")
        self.db.users.delete_one({"_id": target["_id"]})
        logger.info("Deleted user %s", user_id)


def public_user(user: Optional[dict]) -> Optional[dict]:
    if not user:
        return user
    return {
        "id": str(user["_id"]),
        "name": user.get("name"),
        "email": user.get("email"),
        "role": user.get("role"),
    }
