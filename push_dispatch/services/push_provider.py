import logging
from typing import Any, Dict, Optional

import httpx

from push_dispatch.config import Settings
from push_dispatch.models.schemas import DispatchRequest, DispatchResult
from push_dispatch.models.targets import Broadcast, ExplicitIds, TagFilter

logger = logging.getLogger(__name__)

# Delivery policy applied to every notification
PRIORITY = 10
TTL_SECONDS = 86400
SOUND = "default"
ANDROID_VISIBILITY_PUBLIC = 1
IOS_BADGE_TYPE = "Increase"
IOS_BADGE_COUNT = 1


class ProviderTransportError(Exception):
    """The provider could not be reached or the connection failed mid-request"""


def build_payload(
    app_id: str,
    request: DispatchRequest,
    correlation: Optional[Dict[str, str]] = None
) -> Dict[str, Any]:
    """
    Build the OneSignal create-notification body for one request.

    Args:
        app_id: OneSignal application id
        request: Validated dispatch request with a deliverable target
        correlation: Ids merged into the data payload so the provider echoes them.
            Non-empty ids replace caller keys of the same name in data.

    Returns:
        JSON-serialisable request body
    """
    data = dict(request.data)
    if correlation:
        data.update({k: v for k, v in correlation.items() if v})

    payload: Dict[str, Any] = {
        "app_id": app_id,
        "headings": {"en": request.title},
        "contents": {"en": request.message},
        "data": data,
        "priority": PRIORITY,
        "ttl": TTL_SECONDS,
        "android_sound": SOUND,
        "ios_sound": SOUND,
        "android_visibility": ANDROID_VISIBILITY_PUBLIC,
        "android_background_data": True,
        "ios_badgeType": IOS_BADGE_TYPE,
        "ios_badgeCount": IOS_BADGE_COUNT,
    }

    target = request.target
    if isinstance(target, ExplicitIds):
        payload["include_external_user_ids"] = list(target.ids)
        payload["channel_for_external_user_ids"] = "push"
    elif isinstance(target, TagFilter):
        payload["filters"] = [
            {"field": "tag", "key": target.key, "relation": "=", "value": target.value}
        ]
    elif isinstance(target, Broadcast):
        payload["included_segments"] = [target.segment]
    else:
        raise ValueError(f"Cannot dispatch to target {target!r}")

    if request.send_after is not None:
        payload["send_after"] = request.send_after.isoformat()
    if request.delivery_time_of_day:
        payload["delayed_option"] = "timezone"
        payload["delivery_time_of_day"] = request.delivery_time_of_day

    url = request.url
    if url:
        payload["url"] = url

    return payload


def describe_failure(result: DispatchResult) -> str:
    """Human-readable failure reason from a provider response"""
    body = result.raw_response
    errors = body.get("errors") if isinstance(body, dict) else None
    if isinstance(errors, list) and errors:
        detail = "; ".join(str(e) for e in errors)
    elif isinstance(errors, dict) and errors:
        detail = "; ".join(f"{k}: {v}" for k, v in errors.items())
    elif isinstance(body, dict) and body.get("text"):
        detail = str(body["text"])[:500]
    else:
        detail = "no error detail"
    return f"OneSignal API error {result.http_status}: {detail}"


class OneSignalDispatcher:
    """
    Sends one notification per call to the OneSignal REST API.
    No retries: a failed call is reported back and the caller decides.
    """

    def __init__(self, settings: Settings, client: httpx.AsyncClient):
        self.app_id = settings.onesignal_app_id
        self.api_url = settings.onesignal_api_url
        self.client = client
        self._headers = {
            "Content-Type": "application/json",
            "Authorization": f"Basic {settings.onesignal_rest_api_key}",
        }

    async def send(
        self,
        request: DispatchRequest,
        correlation: Optional[Dict[str, str]] = None
    ) -> DispatchResult:
        payload = build_payload(self.app_id, request, correlation)

        try:
            response = await self.client.post(self.api_url, json=payload, headers=self._headers)
        except httpx.HTTPError as e:
            logger.error(f"OneSignal request failed: {e!r}")
            raise ProviderTransportError(f"OneSignal unreachable: {e!r}") from e

        try:
            body = response.json()
        except ValueError:
            body = {"text": response.text}

        provider_id = body.get("id") if isinstance(body, dict) else None
        result = DispatchResult(
            ok=response.is_success,
            provider_id=provider_id or None,
            raw_response=body,
            http_status=response.status_code
        )

        if result.ok:
            logger.info(
                f"OneSignal accepted notification {result.provider_id}",
                extra={"http_status": result.http_status}
            )
        else:
            logger.warning(
                f"OneSignal rejected notification: {describe_failure(result)}",
                extra={"http_status": result.http_status}
            )
        return result
