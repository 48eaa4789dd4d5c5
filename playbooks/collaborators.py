"""
External collaborators used by the action executor.

Each collaborator reports success or failure through a DeliveryResult and
never lets a transport error escape: timeouts, refused connections and
non-2xx answers all become a failed result with a readable message.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

import httpx

from .config import EngineConfig
from .models import UserRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeliveryResult:
    success: bool
    message: str = ""


class EmailSender(Protocol):
    def send(
        self, template_id: str, recipient: str, target_user_id: str, variables: dict
    ) -> DeliveryResult: ...


class TagService(Protocol):
    def add_tag(self, owner_id: str, target_user_id: str, tag: str) -> DeliveryResult: ...


class CrmClient(Protocol):
    def upsert(self, owner_id: str, user: Optional[UserRecord], payload: str,
               target_user_id: str) -> DeliveryResult: ...


# === Log-only stubs ===

class LoggingEmailSender:
    """Logs the email that would be sent and reports success."""

    def send(self, template_id, recipient, target_user_id, variables):
        logger.info(
            f"Would send email template {template_id!r} to {recipient} "
            f"(user {target_user_id})"
        )
        return DeliveryResult(True, f'Email "{template_id}" sent successfully')


class LoggingTagService:
    def add_tag(self, owner_id, target_user_id, tag):
        logger.info(f"Would add tag {tag!r} to user {target_user_id}")
        return DeliveryResult(True, f'Tag "{tag}" added successfully')


class LoggingCrmClient:
    def upsert(self, owner_id, user, payload, target_user_id):
        logger.info(f"Would add user {target_user_id} to CRM with data: {payload}")
        return DeliveryResult(True, "User added to CRM successfully")


# === HTTP webhooks ===

class _Webhook:
    """POSTs JSON to a webhook with an explicit timeout."""

    def __init__(
        self,
        url: str,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        client: Optional[httpx.Client] = None,
    ):
        self.url = url
        self.api_key = api_key
        self.timeout = timeout
        self.client = client or httpx.Client(timeout=timeout)

    def post(self, payload: dict, success_message: str) -> DeliveryResult:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        try:
            response = self.client.post(
                self.url, json=payload, headers=headers, timeout=self.timeout
            )
            response.raise_for_status()
        except httpx.TimeoutException:
            return DeliveryResult(False, f"Timed out after {self.timeout}s calling {self.url}")
        except httpx.HTTPStatusError as e:
            return DeliveryResult(
                False, f"{self.url} answered HTTP {e.response.status_code}"
            )
        except httpx.HTTPError as e:
            return DeliveryResult(False, f"Request to {self.url} failed: {e}")
        return DeliveryResult(True, success_message)

    def close(self) -> None:
        self.client.close()


class WebhookEmailSender(_Webhook):
    """Hands emails to a sending service over HTTP."""

    def send(self, template_id, recipient, target_user_id, variables):
        return self.post(
            {
                "templateId": template_id,
                "targetEmail": recipient,
                "targetUserId": target_user_id,
                "variables": variables,
            },
            f'Email "{template_id}" sent successfully',
        )


class WebhookTagService(_Webhook):
    def add_tag(self, owner_id, target_user_id, tag):
        return self.post(
            {"owner_id": owner_id, "user_id": target_user_id, "tag": tag},
            f'Tag "{tag}" added successfully',
        )


class WebhookCrmClient(_Webhook):
    """Sends a churn_event notification to the owner's CRM webhook."""

    def upsert(self, owner_id, user, payload, target_user_id):
        body = {
            "type": "churn_event",
            "triggered_by": "playbook",
            "owner_id": owner_id,
            "user": {
                "user_id": target_user_id,
                "email": user.email if user else None,
                "churn_score": user.churn_score if user else None,
                "risk_level": user.risk_level if user else None,
            },
            "data": payload,
        }
        return self.post(body, "User added to CRM successfully")


@dataclass
class Collaborators:
    """The side-effect endpoints the executor dispatches to."""

    email: EmailSender
    tags: TagService
    crm: CrmClient

    def close(self) -> None:
        """Release HTTP clients held by webhook collaborators."""
        for endpoint in (self.email, self.tags, self.crm):
            close = getattr(endpoint, "close", None)
            if close is not None:
                close()


def build_collaborators(config: EngineConfig) -> Collaborators:
    """Webhook clients where a URL is configured, log-only stubs elsewhere."""
    timeout = config.collaborator_timeout_seconds

    if config.email_webhook_url:
        email = WebhookEmailSender(config.email_webhook_url, config.api_key, timeout)
    else:
        email = LoggingEmailSender()
    if config.tag_webhook_url:
        tags = WebhookTagService(config.tag_webhook_url, config.api_key, timeout)
    else:
        tags = LoggingTagService()
    if config.crm_webhook_url:
        crm = WebhookCrmClient(config.crm_webhook_url, config.api_key, timeout)
    else:
        crm = LoggingCrmClient()

    return Collaborators(email=email, tags=tags, crm=crm)
