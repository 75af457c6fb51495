"""
Identity Provider Webhook Route

POST /webhooks/identity receives signed user lifecycle events from the
identity provider and mirrors them into the local user table:
- user.created: create the local user if it doesn't exist yet
- user.updated: create or refresh the local user
- user.deleted: delete the local user (succeeds even if already gone)

Other event types are acknowledged and ignored.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from buddy_api.dependencies import get_db, get_webhook
from buddy_api.schemas import WebhookResponse
from buddy_core.identity import WebhookVerificationError, WebhookVerifier, identity_from_payload
from buddy_core.store import StoreError, StudyStore

# Setup logging
logger = logging.getLogger(__name__)

# Create router
router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def handle_user_created(store: StudyStore, data: dict) -> None:
    identity = identity_from_payload(data)
    if store.get_user_by_external_id(identity.external_id) is not None:
        logger.debug(f"Identity {identity.external_id} already linked; skipping create")
        return
    if not identity.email:
        logger.warning(f"Identity {identity.external_id} has no email; skipping create")
        return
    # A pending face sign-up with the same email is linked rather than duplicated.
    user = store.upsert_user_from_identity(
        external_id=identity.external_id,
        email=identity.email,
        first_name=identity.first_name,
        last_name=identity.last_name,
    )
    logger.info(f"Webhook created user {user['user_id']} for {identity.external_id}")


def handle_user_updated(store: StudyStore, data: dict) -> None:
    identity = identity_from_payload(data)
    if not identity.email and store.get_user_by_external_id(identity.external_id) is None:
        logger.warning(f"Identity {identity.external_id} has no email; skipping update")
        return
    user = store.upsert_user_from_identity(
        external_id=identity.external_id,
        email=identity.email,
        first_name=identity.first_name,
        last_name=identity.last_name,
    )
    logger.info(f"Webhook updated user {user['user_id']}")


def handle_user_deleted(store: StudyStore, data: dict) -> None:
    external_id = data.get("id")
    if not external_id:
        logger.warning("user.deleted event without an id")
        return
    if store.delete_user_by_external_id(external_id):
        logger.info(f"Webhook deleted user for {external_id}")
    else:
        logger.info(f"Webhook delete for unknown identity {external_id}")


EVENT_HANDLERS = {
    "user.created": handle_user_created,
    "user.updated": handle_user_updated,
    "user.deleted": handle_user_deleted,
}


@router.post("/identity", response_model=WebhookResponse)
async def identity_webhook(
    request: Request,
    store: StudyStore = Depends(get_db),
    verifier: WebhookVerifier = Depends(get_webhook),
):
    """
    Receive an identity provider event.

    The raw body is verified against the svix-id, svix-timestamp and
    svix-signature headers before anything is parsed.

    Raises:
        400: Missing or invalid signature, or malformed event.
        500: The local user table could not be updated.
    """
    body = await request.body()

    try:
        event = verifier.verify(body, request.headers)
    except WebhookVerificationError as e:
        logger.warning(f"Rejected webhook delivery: {e}")
        raise HTTPException(status_code=400, detail="Invalid webhook signature")

    event_type = event.get("type") if isinstance(event, dict) else None
    data = event.get("data") if isinstance(event, dict) else None
    if not event_type or not isinstance(data, dict):
        raise HTTPException(status_code=400, detail="Malformed webhook event")

    handler = EVENT_HANDLERS.get(event_type)
    if handler is None:
        logger.debug(f"Ignoring webhook event {event_type}")
        return WebhookResponse(event_type=event_type)

    try:
        handler(store, data)
    except KeyError as e:
        raise HTTPException(status_code=400, detail=f"Webhook event missing field {e}")
    except StoreError as e:
        logger.error(f"Failed to apply webhook {event_type}: {e}")
        raise HTTPException(status_code=500, detail="Failed to apply webhook event")

    return WebhookResponse(event_type=event_type)
