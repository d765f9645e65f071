import logging
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Header, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from catalog import CatalogStore, CourseFilter, clamp_page, pagination, sort_from_order
from certificates import CertificateIssuer
from config import Settings, get_settings
from database import Database, serialize_doc
from errors import AuthenticationError, InvalidTokenError, ValidationError, register_error_handlers
from mock_tests import MockTestService
from policy import Caller
from progress import ProgressEngine
from schemas import (
    AttemptCreate,
    CertificateIssue,
    CourseCreate,
    CourseUpdate,
    LoginRequest,
    MockTestCreate,
    RegisterRequest,
    UserUpdate,
    VideoCreate,
    VideoUpdate,
)
from stats import AdminStats
from tokens import ACCESS, TokenService, bearer_token
from users import UserService, public_user

logger = logging.getLogger(__name__)


@dataclass
class Services:
    db: Database
    tokens: TokenService
    users: UserService
    catalog: CatalogStore
    progress: ProgressEngine
    certificates: CertificateIssuer
    mock_tests: MockTestService
    stats: AdminStats

    @classmethod
    def build(cls, db: Database, settings: Settings) -> "Services":
        catalog = CatalogStore(db)
        return cls(
            db=db,
            tokens=TokenService(settings),
            users=UserService(db, settings),
            catalog=catalog,
            progress=ProgressEngine(db, catalog),
            certificates=CertificateIssuer(db, catalog),
            mock_tests=MockTestService(db, catalog),
            stats=AdminStats(db),
        )


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


# ----------------------
# Dependencies
# ----------------------
def get_services(request: Request) -> Services:
    return request.app.state.services


def get_current_user(
    authorization: Optional[str] = Header(None),
    services: Services = Depends(get_services),
) -> dict:
    token = bearer_token(authorization)
    if not token:
        raise AuthenticationError("Please login")
    claims = services.tokens.verify(token, ACCESS)
    return services.users.resolve_identity(claims)


def get_caller(current: dict = Depends(get_current_user)) -> Caller:
    return Caller.from_user(current)


router = APIRouter()


# ----------------------
# Basic routes
# ----------------------
@router.get("/")
def root():
    return {"message": "LearnHub API running"}


@router.get("/health")
def health():
    return {"ok": True}


# ----------------------
# Auth endpoints
# ----------------------
@router.post("/users/register", status_code=201)
def register(payload: RegisterRequest, services: Services = Depends(get_services)):
    user = services.users.register(payload)
    return {"msg": "Registration successful", "user": public_user(user)}


@router.post("/users/login")
def login(payload: LoginRequest, services: Services = Depends(get_services)):
    user = services.users.authenticate(payload.email, payload.password)
    return {
        "msg": "Login successful",
        "user": public_user(user),
        "token": services.tokens.issue_access_token(user),
        "refreshToken": services.tokens.issue_refresh_token(user),
    }


@router.post("/users/logout")
def logout():
    # tokens are stateless; the client discards them
    return {"msg": "Logged out successfully"}


@router.get("/regenerateToken", status_code=201)
def regenerate_token(authorization: Optional[str] = Header(None), services: Services = Depends(get_services)):
    refresh_token = bearer_token(authorization)
    if not refresh_token:
        raise ValidationError("Refresh token required")
    try:
        token = services.tokens.refresh(refresh_token)
    except InvalidTokenError:
        raise ValidationError("not a valid Refresh Token")
    return {"msg": "token created", "token": token}


# ----------------------
# Self-service endpoints
# ----------------------
@router.get("/users/profile")
def profile(current: dict = Depends(get_current_user)):
    return serialize_doc(current)


@router.get("/users/enrolled")
def enrolled(caller: Caller = Depends(get_caller), services: Services = Depends(get_services)):
    return services.progress.enrolled_courses(caller)


@router.get("/users/progress")
def my_progress(caller: Caller = Depends(get_caller), services: Services = Depends(get_services)):
    return services.progress.progress_overview(caller)


@router.get("/users/certificates")
def my_certificates(caller: Caller = Depends(get_caller), services: Services = Depends(get_services)):
    return services.certificates.list_for_user(caller)


@router.get("/users/attempts")
def my_attempts(caller: Caller = Depends(get_caller), services: Services = Depends(get_services)):
    return [serialize_doc(a) for a in services.mock_tests.attempts_for(caller)]


@router.get("/users/teaching")
def my_courses(caller: Caller = Depends(get_caller), services: Services = Depends(get_services)):
    return services.catalog.list_owned(caller)


# ----------------------
# User management
# ----------------------
@router.get("/users")
def list_users(
    search: str = "",
    role: str = "",
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
):
    return [serialize_doc(u) for u in services.users.list_users(caller, search, role)]


@router.get("/users/{user_id}")
def get_user(user_id: str, caller: Caller = Depends(get_caller), services: Services = Depends(get_services)):
    return serialize_doc(services.users.read_user(caller, user_id))


@router.put("/users/{user_id}")
def update_user(
    user_id: str,
    update: UserUpdate,
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
):
    return serialize_doc(services.users.update_user(caller, user_id, update))


@router.delete("/users/{user_id}")
def delete_user(user_id: str, caller: Caller = Depends(get_caller), services: Services = Depends(get_services)):
    services.users.delete_user(caller, user_id)
    return {"msg": "User deleted successfully"}


# ----------------------
# Course endpoints
# ----------------------
@router.get("/courses")
def list_courses(
    search: str = "",
    category: str = "",
    min_price: Optional[float] = Query(None, alias="minPrice", ge=0),
    max_price: Optional[float] = Query(None, alias="maxPrice", ge=0),
    order: str = "",
    page: Optional[int] = None,
    limit: Optional[int] = None,
    services: Services = Depends(get_services),
):
    page, limit = clamp_page(page, limit, default_limit=6)
    f = CourseFilter(
        search=search.strip(),
        category=category.strip(),
        min_price=min_price,
        max_price=max_price,
        sort=sort_from_order(order),
    )
    items, total = services.catalog.list_courses(f, page, limit)
    return {"data": items, "pagination": pagination(total, page, limit)}


@router.get("/courses/{course_id}")
def get_course(course_id: str, services: Services = Depends(get_services)):
    return services.catalog.course_detail(course_id)


@router.post("/courses", status_code=201)
def create_course(body: CourseCreate, caller: Caller = Depends(get_caller), services: Services = Depends(get_services)):
    return serialize_doc(services.catalog.create_course(caller, body))


@router.put("/courses/{course_id}")
def update_course(
    course_id: str,
    body: CourseUpdate,
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
):
    return serialize_doc(services.catalog.update_course(caller, course_id, body))


@router.delete("/courses/{course_id}")
def delete_course(course_id: str, caller: Caller = Depends(get_caller), services: Services = Depends(get_services)):
    removed = services.catalog.delete_course(caller, course_id)
    return {"msg": "deleted", "removed": removed}


# ----------------------
# Enrollment & progress endpoints
# ----------------------
@router.post("/courses/{course_id}/enroll", status_code=201)
def enroll(course_id: str, caller: Caller = Depends(get_caller), services: Services = Depends(get_services)):
    enrollment = services.progress.enroll(caller, course_id)
    return {"msg": "Enrolled successfully", "enrollment": serialize_doc(enrollment)}


@router.get("/courses/{course_id}/progress")
def course_progress(course_id: str, caller: Caller = Depends(get_caller), services: Services = Depends(get_services)):
    return services.progress.course_progress(caller, course_id)


@router.post("/courses/{course_id}/certificates")
def issue_certificate(
    course_id: str,
    body: CertificateIssue,
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
):
    certificate, created = services.certificates.issue_for_course(caller, course_id, body)
    return JSONResponse(status_code=201 if created else 200, content=serialize_doc(certificate))


@router.post("/courses/{course_id}/mock-tests", status_code=201)
def create_mock_test(
    course_id: str,
    body: MockTestCreate,
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
):
    return serialize_doc(services.mock_tests.create(caller, course_id, body))


@router.get("/courses/{course_id}/mock-tests")
def list_mock_tests(course_id: str, caller: Caller = Depends(get_caller), services: Services = Depends(get_services)):
    return [serialize_doc(t) for t in services.mock_tests.list_for_course(caller, course_id)]


@router.post("/mock-tests/{test_id}/attempts")
def record_attempt(
    test_id: str,
    body: AttemptCreate,
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
):
    return serialize_doc(services.mock_tests.record_attempt(caller, test_id, body.score))


# ----------------------
# Video endpoints
# ----------------------
@router.get("/videos")
def list_videos(
    course_id: str = Query("", alias="courseId"),
    search: str = "",
    page: Optional[int] = None,
    limit: Optional[int] = None,
    services: Services = Depends(get_services),
):
    page, limit = clamp_page(page, limit, default_limit=10)
    items, total = services.catalog.list_videos(course_id.strip(), search.strip(), page, limit)
    return {"data": [serialize_doc(v) for v in items], "pagination": pagination(total, page, limit)}


@router.get("/videos/{video_id}")
def get_video(video_id: str, services: Services = Depends(get_services)):
    return serialize_doc(services.catalog.get_video(video_id))


@router.post("/videos", status_code=201)
def create_video(body: VideoCreate, caller: Caller = Depends(get_caller), services: Services = Depends(get_services)):
    return serialize_doc(services.catalog.create_video(caller, body))


@router.put("/videos/{video_id}")
def update_video(
    video_id: str,
    body: VideoUpdate,
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
):
    return serialize_doc(services.catalog.update_video(caller, video_id, body))


@router.delete("/videos/{video_id}")
def delete_video(video_id: str, caller: Caller = Depends(get_caller), services: Services = Depends(get_services)):
    services.catalog.delete_video(caller, video_id)
    return {"msg": "deleted"}


@router.post("/videos/{video_id}/watched")
def mark_watched(video_id: str, caller: Caller = Depends(get_caller), services: Services = Depends(get_services)):
    progress = services.progress.mark_watched(caller, video_id)
    return {"msg": "Video marked as watched", "progress": serialize_doc(progress)}


@router.get("/videos/{video_id}/progress")
def video_progress(video_id: str, caller: Caller = Depends(get_caller), services: Services = Depends(get_services)):
    return services.progress.video_progress(caller, video_id)


# ----------------------
# Admin endpoints
# ----------------------
@router.get("/admin/stats")
def stats(
    window_days: Optional[str] = Query(None, alias="windowDays"),
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
):
    return services.stats.dashboard(caller, window_days)


# ----------------------
# App factory
# ----------------------
def create_app(settings: Optional[Settings] = None, database: Optional[Database] = None) -> FastAPI:
    """Build the API. Pass `database` to run against an already-open handle."""
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings)
        owns_handle = database is None
        if owns_handle:
            try:
                db = Database.connect(settings)
            except Exception:
                logger.critical("Could not connect to MongoDB at startup", exc_info=True)
                raise
        else:
            db = database
        db.ensure_indexes()
        services = Services.build(db, settings)
        services.users.ensure_admin(settings)
        app.state.services = services
        try:
            yield
        finally:
            if owns_handle:
                db.close()

    app = FastAPI(title="LearnHub API", lifespan=lifespan)
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_error_handlers(app)
    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    port = int(os.getenv("PORT", settings.PORT))
    uvicorn.run(app, host=settings.HOST, port=port)
