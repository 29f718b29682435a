# signwatch/providers/graph.py
"""
Microsoft Graph client: sign-in logs, users, authentication methods.

Provider JSON is decoded here, once. The rest of the code only sees RawSignIn,
DirectoryUser and DeviceMethod.
"""
from __future__ import annotations
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol

import httpx

from signwatch.anomaly.devices import DeviceInfo, DeviceKind
from signwatch.core.errors import ProviderError
from signwatch.core.timeutil import format_instant, parse_instant
from signwatch.persistence.models import format_status

logger = logging.getLogger(__name__)

GRAPH_SCOPE = "https://graph.microsoft.com/.default"


@dataclass(frozen=True)
class RawSignIn:
    external_id: Optional[str]
    user_id: Optional[str]
    principal_name: str
    ip_address: str
    login_time: Optional[datetime]
    succeeded: bool
    failure_reason: Optional[str] = None

    @property
    def status(self) -> str:
        return format_status(self.succeeded, self.failure_reason)


@dataclass(frozen=True)
class DirectoryUser:
    id: str
    principal_name: str


@dataclass(frozen=True)
class DeviceMethod:
    device_id: str
    display_name: str
    kind: DeviceKind

    def info(self) -> DeviceInfo:
        return DeviceInfo(display_name=self.display_name, kind=self.kind)


class IdentityProvider(Protocol):
    async def fetch_sign_ins(self, since: Optional[datetime] = None) -> List[RawSignIn]: ...
    async def fetch_auth_methods(self, user_id: str) -> List[DeviceMethod]: ...
    async def fetch_all_users(self) -> List[DirectoryUser]: ...


_ODATA_KINDS = {
    "#microsoft.graph.microsoftAuthenticatorAuthenticationMethod": DeviceKind.AUTHENTICATOR_APP,
    "#microsoft.graph.fido2AuthenticationMethod": DeviceKind.SECURITY_KEY,
    "#microsoft.graph.softwareOathAuthenticationMethod": DeviceKind.SOFTWARE_TOKEN,
}


def decode_sign_in(item: Dict[str, Any]) -> RawSignIn:
    status = item.get("status") or {}
    succeeded = bool(item.get("status")) and status.get("errorCode") == 0
    return RawSignIn(
        external_id=item.get("id"),
        user_id=item.get("userId"),
        principal_name=item.get("userPrincipalName") or "",
        ip_address=(item.get("ipAddress") or "").strip(),
        login_time=parse_instant(item.get("createdDateTime")),
        succeeded=succeeded,
        failure_reason=None if succeeded else status.get("failureReason"),
    )


def decode_auth_method(item: Dict[str, Any]) -> DeviceMethod:
    kind = _ODATA_KINDS.get(item.get("@odata.type", ""), DeviceKind.UNRECOGNIZED)
    if kind is DeviceKind.AUTHENTICATOR_APP:
        device = item.get("device") or {}
        name = item.get("displayName") or device.get("displayName") or "Authenticator App"
    elif kind is DeviceKind.SECURITY_KEY:
        name = item.get("displayName") or "Security Key"
    elif kind is DeviceKind.SOFTWARE_TOKEN:
        name = "Third-Party Authenticator"
    else:
        name = item.get("@odata.type", "unknown").rsplit(".", 1)[-1]
    return DeviceMethod(device_id=str(item.get("id", "")), display_name=name, kind=kind)


class GraphClient:
    def __init__(
        self,
        *,
        tenant_id: str,
        client_id: str,
        client_secret: str,
        base_url: str = "https://graph.microsoft.com/v1.0",
        login_url: str = "https://login.microsoftonline.com",
        page_size: int = 500,
        timeout_sec: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.tenant_id = tenant_id
        self.client_id = client_id
        self.client_secret = client_secret
        self.base_url = base_url.rstrip("/")
        self.login_url = login_url.rstrip("/")
        self.page_size = page_size
        self._client = client or httpx.AsyncClient(timeout=timeout_sec)
        self._owns_client = client is None
        self._token: Optional[str] = None
        self._token_expires = 0.0

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _access_token(self) -> str:
        if self._token and time.monotonic() < self._token_expires:
            return self._token
        url = f"{self.login_url}/{self.tenant_id}/oauth2/v2.0/token"
        try:
            resp = await self._client.post(url, data={
                "grant_type": "client_credentials",
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "scope": GRAPH_SCOPE,
            })
            resp.raise_for_status()
            body = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise ProviderError(f"token request failed: {e}", operation="token") from e
        self._token = body["access_token"]
        # süresi dolmadan 60 sn önce yenile
        self._token_expires = time.monotonic() + max(int(body.get("expires_in", 3600)) - 60, 0)
        return self._token

    async def _get_all(self, path: str, params: Optional[Dict[str, Any]], operation: str) -> List[Dict[str, Any]]:
        url: Optional[str] = self.base_url + path
        items: List[Dict[str, Any]] = []
        while url:
            token = await self._access_token()
            try:
                resp = await self._client.get(url, params=params, headers={"Authorization": f"Bearer {token}"})
                resp.raise_for_status()
                body = resp.json()
            except (httpx.HTTPError, ValueError) as e:
                raise ProviderError(f"{operation} failed: {e}", operation=operation) from e
            items.extend(body.get("value") or [])
            url = body.get("@odata.nextLink")
            params = None  # nextLink sorguyu zaten içeriyor
        return items

    async def fetch_sign_ins(self, since: Optional[datetime] = None) -> List[RawSignIn]:
        params: Dict[str, Any] = {"$top": self.page_size, "$orderby": "createdDateTime desc"}
        if since is not None:
            params["$filter"] = f"createdDateTime ge {format_instant(since)}"
        raw = await self._get_all("/auditLogs/signIns", params, "fetch_sign_ins")
        logger.info("fetched %d sign-in records", len(raw))
        return [decode_sign_in(item) for item in raw]

    async def fetch_auth_methods(self, user_id: str) -> List[DeviceMethod]:
        raw = await self._get_all(f"/users/{user_id}/authentication/methods", None, "fetch_auth_methods")
        return [decode_auth_method(item) for item in raw]

    async def fetch_all_users(self) -> List[DirectoryUser]:
        params = {
            "$filter": "accountEnabled eq true and userType eq 'Member'",
            "$select": "id,userPrincipalName",
        }
        raw = await self._get_all("/users", params, "fetch_all_users")
        return [DirectoryUser(id=u["id"], principal_name=u.get("userPrincipalName") or "") for u in raw if u.get("id")]
