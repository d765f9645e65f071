"""
Certificate issuer

At most one certificate per (student, course). The grade is decided by the
caller; this component only persists it once. The first issued certificate
wins and later calls return it unchanged.
"""
import logging
from typing import List, Tuple

from pymongo import DESCENDING
from pymongo.errors import DuplicateKeyError

from catalog import CatalogStore
from database import Database, oid, serialize_doc, utcnow
from errors import UserNotFoundError
from policy import Action, Caller, Resource, authorize
from schemas import Certificate, CertificateIssue

logger = logging.getLogger(__name__)


class CertificateIssuer:
    def __init__(self, db: Database, catalog: CatalogStore):
        self.db = db
        self.catalog = catalog

    def issue(self, student_id: str, course_id: str, grade: str, file_url: str = "") -> Tuple[dict, bool]:
        """Return (certificate, created)."""
        doc = Certificate(
            user_id=student_id,
            course_id=course_id,
            grade=grade,
            file_url=file_url or "",
            issued_at=utcnow(),
        ).model_dump()
        try:
            res = self.db.certificates.insert_one(doc)
        except DuplicateKeyError:
            existing = self.db.certificates.find_one({"user_id": student_id, "course_id": course_id})
            return existing, False
        doc["_id"] = res.inserted_id
        logger.info("Issued certificate %s for user %s in course %s", doc["_id"], student_id, course_id)
        return doc, True

    def issue_for_course(self, caller: Caller, course_id: str, payload: CertificateIssue) -> Tuple[dict, bool]:
        course = self.catalog.get_course(course_id)
        authorize(caller, Action.CERTIFICATE_ISSUE, Resource(owner_id=course.get("teacher_id")))
        student = self.db.users.find_one({"_id": oid(payload.user_id, UserNotFoundError)}, {"_id": 1})
        if not student:
            raise UserNotFoundError()
        return self.issue(str(student["_id"]), str(course["_id"]), payload.grade.strip(), payload.file_url)

    def list_for_user(self, caller: Caller) -> List[dict]:
        authorize(caller, Action.VIEW_OWN_CERTIFICATES)
        certs = list(self.db.certificates.find({"user_id": caller.id}).sort("issued_at", DESCENDING))
        course_ids = [oid(c["course_id"]) for c in certs]
        titles = {
            str(c["_id"]): c.get("title")
            for c in self.db.courses.find({"_id": {"$in": course_ids}}, {"title": 1})
        } if course_ids else {}
        out = []
        for c in certs:
            item = serialize_doc(c)
            item["course"] = {"title": titles.get(c["course_id"])}
            out.append(item)
        return out
