"""GDPR self-assessment questionnaire for Controllers and DPOs.

Answers are stored positionally on the Application (``detail_vote[i]`` is
the answer to question ``i``) together with the resulting traffic-light
vote:

- a question hidden by its ``visible_if`` condition is not counted
- an answer in the question's green / orange set counts green / orange
- anything else (red answers, unknown answers, no answer) counts red
- the vote is RED if any red, else ORANGE if any orange, else GREEN
"""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from dataclasses import dataclass

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.audit import AuditService
from src.core.errors import AuthorizationError, ValidationError
from src.core.policy import Capability, RoleResolver
from src.models.application import Application, QuestionnaireVote
from src.services.associations import AssociationDirectory

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Question:
    id: int
    title: str
    green: tuple[str, ...]
    orange: tuple[str, ...] = ()
    red: tuple[str, ...] = ()
    # (question id, required answer) - only shown when that answer was given
    visible_if: tuple[int, str] | None = None
    optional_text_label: str | None = None

    @property
    def choices(self) -> tuple[str, ...]:
        return self.green + self.orange + self.red


QUESTIONS: tuple[Question, ...] = (
    Question(
        id=0,
        title="Is there a documented legal basis for every processing purpose?",
        green=("yes",),
        orange=("partially",),
        red=("no",),
    ),
    Question(
        id=1,
        title="Do you process special categories of personal data (health, biometrics, ...)?",
        green=("no",),
        orange=("yes",),
    ),
    Question(
        id=2,
        title="Has a Data Protection Impact Assessment been carried out?",
        green=("yes",),
        orange=("in_progress",),
        red=("no",),
        visible_if=(1, "yes"),
    ),
    Question(
        id=3,
        title="Is personal data encrypted at rest and in transit?",
        green=("yes",),
        orange=("partially",),
        red=("no",),
    ),
    Question(
        id=4,
        title="Is personal data transferred outside the EU/EEA?",
        green=("no",),
        orange=("yes",),
        optional_text_label="Destination countries",
    ),
    Question(
        id=5,
        title="Are those transfers covered by an adequacy decision or standard contractual clauses?",
        green=("yes",),
        red=("no",),
        visible_if=(4, "yes"),
    ),
    Question(
        id=6,
        title="Is a retention period defined for every data category?",
        green=("yes",),
        orange=("partially",),
        red=("no",),
        optional_text_label="Retention periods",
    ),
    Question(
        id=7,
        title="Can personal data breaches be reported to the authority within 72 hours?",
        green=("yes",),
        red=("no",),
    ),
    Question(
        id=8,
        title="Has a Data Protection Officer been appointed?",
        green=("yes", "not_required"),
        orange=("no",),
    ),
)


@dataclass(frozen=True)
class Evaluation:
    vote: QuestionnaireVote
    red: int
    orange: int
    green: int


def _answer_at(answers: Sequence[str | None], index: int) -> str | None:
    return answers[index] if index < len(answers) else None


def evaluate(answers: Sequence[str | None]) -> Evaluation:
    red = orange = green = 0
    for question in QUESTIONS:
        if question.visible_if is not None:
            depends_on, expected = question.visible_if
            if _answer_at(answers, depends_on) != expected:
                continue

        answer = _answer_at(answers, question.id)
        if answer is not None and answer in question.green:
            green += 1
        elif answer is not None and answer in question.orange:
            orange += 1
        else:
            red += 1

    if red:
        vote = QuestionnaireVote.RED
    elif orange:
        vote = QuestionnaireVote.ORANGE
    else:
        vote = QuestionnaireVote.GREEN
    return Evaluation(vote=vote, red=red, orange=orange, green=green)


def _pad(values: Sequence[str | None] | None) -> list[str | None]:
    values = list(values or [])
    if len(values) > len(QUESTIONS):
        raise ValidationError(f"Expected at most {len(QUESTIONS)} answers, got {len(values)}")
    return values + [None] * (len(QUESTIONS) - len(values))


class QuestionnaireService:
    def __init__(self, db: AsyncSession) -> None:
        self._db = db
        self._roles = RoleResolver(db)
        self._associations = AssociationDirectory(db)
        self._audit = AuditService(db)

    async def submit(
        self,
        user_id: uuid.UUID,
        application_id: uuid.UUID,
        answers: Sequence[str | None],
        optional_answers: Sequence[str | None] | None = None,
    ) -> tuple[Application, Evaluation]:
        """Store the answers on the application and recompute its vote."""
        user = await self._roles.require(user_id, Capability.QUESTIONNAIRE_MANAGE)
        app = await self._associations.get_application(application_id)
        await self._associations.require_association(user.id, app.id, error=AuthorizationError)

        detail = _pad(answers)
        for question, answer in zip(QUESTIONS, detail, strict=True):
            if answer is not None and answer not in question.choices:
                raise ValidationError(
                    f"Invalid answer {answer!r} for question {question.id}; "
                    f"expected one of: {', '.join(question.choices)}"
                )

        evaluation = evaluate(detail)
        app.detail_vote = detail
        app.optional_answers = _pad(optional_answers)
        app.questionnaire_vote = evaluation.vote
        await self._db.flush()

        await self._audit.log(
            actor_id=user.id,
            action="questionnaire.submit",
            resource_type="application",
            resource_id=app.id,
            extra={
                "vote": evaluation.vote.value,
                "red": evaluation.red,
                "orange": evaluation.orange,
                "green": evaluation.green,
            },
        )
        log.info(
            "questionnaire.submitted",
            application_id=str(app.id),
            user_id=str(user.id),
            vote=evaluation.vote.value,
        )
        return app, evaluation
