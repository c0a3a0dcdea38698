# Content Publishing
# Marks submitted content as live once the creator posts it.

from datetime import datetime
from typing import Optional
import logging

from sqlalchemy.orm import Session

from database.workflow_models import CampaignContent, ContentStatusDB
from services.errors import NotFound, InvalidStateTransition

logger = logging.getLogger(__name__)


class ContentPublisher:
    """
    publish_content is idempotent: publishing the same content again with
    the same live URL returns the record unchanged.
    """

    def __init__(self, db: Session):
        self.db = db

    def latest_content_for(self, proposal_id: str) -> Optional[CampaignContent]:
        return self.db.query(CampaignContent).filter(
            CampaignContent.proposal_id == proposal_id
        ).order_by(CampaignContent.submitted_at.desc(), CampaignContent.created_at.desc()).first()

    def publish_content(self, content_id: str, actor_id: str, live_url: str) -> CampaignContent:
        content = self.db.query(CampaignContent).filter(CampaignContent.id == content_id).first()
        if not content:
            raise NotFound("Content not found")

        if content.status == ContentStatusDB.PUBLISHED:
            if content.live_post_url == live_url:
                return content
            raise InvalidStateTransition("Content is already published with a different URL")
        if content.status == ContentStatusDB.REJECTED:
            raise InvalidStateTransition("Rejected content cannot be published")

        content.status = ContentStatusDB.PUBLISHED
        content.live_post_url = live_url
        content.published_at = datetime.utcnow()
        content.published_by = actor_id
        self.db.flush()
        logger.info(f"Content {content_id} published at {live_url}")
        return content
