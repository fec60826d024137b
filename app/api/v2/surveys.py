"""
Survey API Endpoints

- POST /surveys/{survey_id}/responses - Store a customer response and queue
  its post-processing (crisis alerts, rewards, milestones)
- POST /surveys/{survey_id}/alerts/test - Send the alert template to one phone
"""

from fastapi import APIRouter, status
import logging

from app.api.deps import Repository, Queue, Processor, WhatsApp
from app.exceptions import NotFoundError
from app.schemas.survey import SubmissionCreate, SubmissionResponse, AlertTestRequest
from app.services.notification_dispatcher import NotificationDispatcher

logger = logging.getLogger(__name__)
router = APIRouter()

TEST_ALERT_BODY = "Si ves esto, este formato es el correcto."


@router.post("/{survey_id}/responses", response_model=SubmissionResponse, status_code=status.HTTP_201_CREATED)
async def submit_response(
    survey_id: str,
    submission: SubmissionCreate,
    repository: Repository,
    queue: Queue,
    processor: Processor,
):
    """
    Store a response with its answers.

    Notification work runs on the dispatch queue after the response is
    committed, so provider latency or errors never fail the submission.
    """
    survey = await repository.fetch_survey(survey_id)
    if not survey:
        raise NotFoundError("Survey", survey_id)

    customer = submission.customer
    response = await repository.create_response(
        survey,
        answers=[(a.question_id, a.value) for a in submission.answers],
        customer_name=customer.name if customer else None,
        customer_phone=customer.phone if customer else None,
        customer_email=customer.email if customer else None,
        customer_source=customer.source if customer else None,
        photo=submission.photo,
    )

    if not queue.submit(f"process-response:{response.id}", processor.process, response.id):
        logger.error(f"Response {response.id} stored but post-processing could not be queued")

    return response


@router.post("/{survey_id}/alerts/test")
async def send_test_alert(
    survey_id: str,
    request: AlertTestRequest,
    repository: Repository,
    whatsapp: WhatsApp,
):
    """Send the crisis alert template to a single phone and report the provider result."""
    survey = await repository.fetch_survey(survey_id)
    if not survey:
        raise NotFoundError("Survey", survey_id)

    dispatcher = NotificationDispatcher(repository, whatsapp=whatsapp)
    report = await dispatcher.send_templated(
        [request.phone],
        params=[f"Prueba ({survey.title})", "5", TEST_ALERT_BODY],
    )
    return {"survey_id": survey_id, **report.to_dict()}
