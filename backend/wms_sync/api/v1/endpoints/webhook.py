import logging
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from wms_sync.config import settings
from wms_sync.database import get_db
from wms_sync.exceptions import InvalidSignature, MalformedPayload
from wms_sync.services.webhook_processor import WebhookAck, WebhookProcessor

log = logging.getLogger(__name__)
router = APIRouter()


@router.post("/webhook", response_model=WebhookAck, status_code=status.HTTP_200_OK)
async def receive_webhook(request: Request, db: Session = Depends(get_db)):
    """Receive push notifications from the connected WMS systems."""
    raw_body = await request.body()
    signature = request.headers.get(settings.webhook_signature_header)
    try:
        return await WebhookProcessor(db).handle(raw_body, signature)
    except InvalidSignature as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e))
    except MalformedPayload as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
