"""Application endpoints.

GET  /api/v1/apps                              - Applications of the current user
GET  /api/v1/apps/questionnaire/questions      - The GDPR questionnaire catalogue
GET  /api/v1/apps/{app_id}                     - One application (members only)
GET  /api/v1/apps/{app_id}/members             - Users of an application
PUT  /api/v1/apps/{app_id}/questionnaire       - Submit questionnaire answers (Controller/DPO)
"""

from __future__ import annotations

import uuid

import structlog
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.schemas import ApplicationResponse, UserSummary
from src.auth.dependencies import AuthenticatedUser, get_current_user, require_role
from src.core.errors import AuthorizationError
from src.database import get_db_session
from src.models.user import Role
from src.services.associations import AssociationDirectory
from src.services.questionnaire import QUESTIONS, QuestionnaireService

log = structlog.get_logger(__name__)

router = APIRouter(prefix="/apps", tags=["apps"])


class QuestionResponse(BaseModel):
    id: int
    title: str
    choices: list[str]
    depends_on: int | None = None
    depends_on_answer: str | None = None
    optional_text_label: str | None = None


class QuestionnaireSubmit(BaseModel):
    answers: list[str | None] = Field(..., max_length=len(QUESTIONS))
    optional_answers: list[str | None] = Field(default_factory=list, max_length=len(QUESTIONS))


class QuestionnaireResult(BaseModel):
    application: ApplicationResponse
    vote: str
    red: int
    orange: int
    green: int


@router.get("", response_model=list[ApplicationResponse])
async def list_my_apps(
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> list[ApplicationResponse]:
    apps = await AssociationDirectory(db).applications_for(current_user.id)
    return [ApplicationResponse.model_validate(a) for a in apps]


@router.get("/questionnaire/questions", response_model=list[QuestionResponse])
async def list_questions(
    current_user: AuthenticatedUser = Depends(get_current_user),
) -> list[QuestionResponse]:
    return [
        QuestionResponse(
            id=q.id,
            title=q.title,
            choices=list(q.choices),
            depends_on=q.visible_if[0] if q.visible_if else None,
            depends_on_answer=q.visible_if[1] if q.visible_if else None,
            optional_text_label=q.optional_text_label,
        )
        for q in QUESTIONS
    ]


@router.get("/{app_id}", response_model=ApplicationResponse)
async def get_app(
    app_id: uuid.UUID,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> ApplicationResponse:
    directory = AssociationDirectory(db)
    app = await directory.get_application(app_id)
    await directory.require_association(current_user.id, app.id, error=AuthorizationError)
    return ApplicationResponse.model_validate(app)


@router.get("/{app_id}/members", response_model=list[UserSummary])
async def list_members(
    app_id: uuid.UUID,
    role: Role | None = Query(default=None),
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> list[UserSummary]:
    directory = AssociationDirectory(db)
    await directory.get_application(app_id)
    await directory.require_association(current_user.id, app_id, error=AuthorizationError)
    members = await directory.members(app_id, roles=(role,) if role else None)
    if current_user.role == Role.SUBJECT:
        # Subjects only see who is responsible for the app, never other subjects
        members = [m for m in members if m.is_staff]
    return [UserSummary.model_validate(m) for m in members]


@router.put("/{app_id}/questionnaire", response_model=QuestionnaireResult)
async def submit_questionnaire(
    app_id: uuid.UUID,
    body: QuestionnaireSubmit,
    current_user: AuthenticatedUser = Depends(require_role(Role.CONTROLLER, Role.DPO)),
    db: AsyncSession = Depends(get_db_session),
) -> QuestionnaireResult:
    app, evaluation = await QuestionnaireService(db).submit(
        current_user.id,
        app_id,
        body.answers,
        body.optional_answers,
    )
    return QuestionnaireResult(
        application=ApplicationResponse.model_validate(app),
        vote=evaluation.vote,
        red=evaluation.red,
        orange=evaluation.orange,
        green=evaluation.green,
    )
