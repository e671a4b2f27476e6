"""Email delivery collaborator."""

from __future__ import annotations

from typing import Any, Dict, Optional, Protocol

from .http import HttpServiceClient


class EmailDeliveryService(Protocol):
    async def send_personalized_email(
        self,
        template_name: str,
        recipient_email: str,
        recipient_name: str,
        variables: Dict[str, Any],
        candidate_profile: Optional[Dict[str, Any]] = None,
        job_title: Optional[str] = None,
        company_name: Optional[str] = None,
        use_ai_personalization: bool = False,
        idempotency_key: Optional[str] = None,
    ) -> bool:
        """Render ``template_name`` and deliver it. Returns ``False`` on refusal.

        The mail service delivers at most once per ``idempotency_key``.
        """


class HttpEmailDeliveryService(HttpServiceClient):
    """Email delivery over the mail service's HTTP API."""

    service_name = "email"

    async def send_personalized_email(
        self,
        template_name: str,
        recipient_email: str,
        recipient_name: str,
        variables: Dict[str, Any],
        candidate_profile: Optional[Dict[str, Any]] = None,
        job_title: Optional[str] = None,
        company_name: Optional[str] = None,
        use_ai_personalization: bool = False,
        idempotency_key: Optional[str] = None,
    ) -> bool:
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else None
        body = await self._request(
            "POST",
            "/emails/personalized",
            headers=headers,
            json={
                "template_name": template_name,
                "recipient_email": recipient_email,
                "recipient_name": recipient_name,
                "variables": variables,
                "candidate_profile": candidate_profile,
                "job_title": job_title,
                "company_name": company_name,
                "use_ai_personalization": use_ai_personalization,
            },
        )
        return bool(body and body.get("sent"))
