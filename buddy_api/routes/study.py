"""
Study API Routes

Completion-backed study helpers and the user's saved study history:
- POST /generate-plan: Learning plan for a topic
- POST /generate-quiz: Multiple-choice quiz for a topic
- POST /explain-answer: Explanation of a quiz answer
- POST /learning-plans: Save a plan
- POST /quiz-results: Save a completed quiz
- GET  /history: Saved plans and quiz results, newest first
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException

from buddy_api.dependencies import get_completion, get_current_user, get_db
from buddy_api.schemas import (
    ExplainRequest,
    ExplainResponse,
    HistoryResponse,
    LearningPlanSchema,
    PlanResponse,
    QuizQuestionSchema,
    QuizResponse,
    QuizResultSchema,
    SavePlanRequest,
    SavePlanResponse,
    SaveQuizResultRequest,
    SaveQuizResultResponse,
    TopicRequest,
)
from buddy_core.completion import CompletionClient, CompletionError
from buddy_core.store import StudyStore

# Setup logging
logger = logging.getLogger(__name__)

# Create router
router = APIRouter(tags=["study"])


def completion_failed(client: CompletionClient, error: CompletionError) -> HTTPException:
    """Map a completion failure to 503 (not configured) or 502 (upstream)."""
    if not client.is_configured:
        return HTTPException(status_code=503, detail="Completion service is not configured")
    return HTTPException(status_code=502, detail=str(error))


@router.post("/generate-plan", response_model=PlanResponse)
async def generate_plan(
    request: TopicRequest,
    user: Dict[str, Any] = Depends(get_current_user),
    completion: CompletionClient = Depends(get_completion),
):
    """Generate a step-by-step learning plan for a topic."""
    try:
        plan = await completion.generate_plan(request.topic)
    except CompletionError as e:
        raise completion_failed(completion, e)

    logger.info(f"Generated plan for {user['user_id']}")
    return PlanResponse(plan=plan)


@router.post("/generate-quiz", response_model=QuizResponse)
async def generate_quiz(
    request: TopicRequest,
    user: Dict[str, Any] = Depends(get_current_user),
    completion: CompletionClient = Depends(get_completion),
):
    """
    Generate a short quiz for a topic.

    Model output that cannot be read as questions gives an empty quiz.
    """
    try:
        questions = await completion.generate_quiz(request.topic)
    except CompletionError as e:
        raise completion_failed(completion, e)

    return QuizResponse(quiz=[QuizQuestionSchema(**q.to_dict()) for q in questions])


@router.post("/explain-answer", response_model=ExplainResponse)
async def explain_answer(
    request: ExplainRequest,
    user: Dict[str, Any] = Depends(get_current_user),
    completion: CompletionClient = Depends(get_completion),
):
    """Explain the correct answer to a quiz question."""
    try:
        explanation = await completion.explain_answer(
            question=request.question,
            answer=request.answer,
            user_answer=request.user_answer,
            topic=request.topic,
        )
    except CompletionError as e:
        raise completion_failed(completion, e)

    return ExplainResponse(explanation=explanation)


@router.post("/learning-plans", response_model=SavePlanResponse)
async def save_learning_plan(
    request: SavePlanRequest,
    user: Dict[str, Any] = Depends(get_current_user),
    store: StudyStore = Depends(get_db),
):
    """Save a learning plan to the user's history."""
    plan = store.save_learning_plan(user["user_id"], request.topic, request.content)
    return SavePlanResponse(plan=LearningPlanSchema(**plan))


@router.post("/quiz-results", response_model=SaveQuizResultResponse)
async def save_quiz_result(
    request: SaveQuizResultRequest,
    user: Dict[str, Any] = Depends(get_current_user),
    store: StudyStore = Depends(get_db),
):
    """Save a completed quiz to the user's history."""
    result = store.save_quiz_result(
        user["user_id"],
        topic=request.topic,
        questions=[q.model_dump() for q in request.questions],
        answers=request.answers,
        score=request.score,
    )
    return SaveQuizResultResponse(result=QuizResultSchema(**result))


@router.get("/history", response_model=HistoryResponse)
async def get_history(
    user: Dict[str, Any] = Depends(get_current_user),
    store: StudyStore = Depends(get_db),
):
    """Return the user's saved plans and quiz results, newest first."""
    plans = store.list_learning_plans(user["user_id"])
    quizzes = store.list_quiz_results(user["user_id"])
    return HistoryResponse(
        plans=[LearningPlanSchema(**p) for p in plans],
        quizzes=[QuizResultSchema(**q) for q in quizzes],
    )
