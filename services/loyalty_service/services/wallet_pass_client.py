"""HTTP client for the external wallet pass provisioner.

The provisioner turns a membership into an Apple/Google wallet pass and
accepts field updates for passes it has issued. Only the transport lives
here; the engine decides what the fields say.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Protocol

import httpx
from libs.common.config import get_settings
from libs.common.logging import get_logger, get_request_id
from services.loyalty_service.services.errors import ProvisionerError

logger = get_logger(__name__)


@dataclass(frozen=True)
class IssuedPass:
    serial: str
    apple_url: Optional[str] = None
    google_url: Optional[str] = None


class WalletPassProvisioner(Protocol):
    async def issue_pass(
        self, *, template_id: str, member: dict[str, str], fields: dict[str, str]
    ) -> IssuedPass: ...

    async def update_pass(
        self, *, template_id: str, serial: str, fields: dict[str, str], push: bool
    ) -> None: ...


class HttpWalletPassProvisioner:
    """Talks to the provisioner's REST API with a bearer API key."""

    def __init__(self, base_url: str, api_key: str, timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout

    @classmethod
    def from_settings(cls) -> Optional["HttpWalletPassProvisioner"]:
        """Build from settings, or None when no API key is configured."""
        settings = get_settings()
        if not settings.WALLET_PASS_API_KEY:
            return None
        return cls(
            settings.WALLET_PASS_API_URL,
            settings.WALLET_PASS_API_KEY,
            timeout=settings.WALLET_PASS_TIMEOUT_SECONDS,
        )

    def _headers(self) -> dict[str, str]:
        headers = {"Authorization": f"Bearer {self.api_key}"}
        request_id = get_request_id()
        if request_id:
            headers["X-Request-ID"] = request_id
        return headers

    async def _request(self, method: str, path: str, json: Any) -> httpx.Response:
        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.request(
                    method, url, headers=self._headers(), json=json
                )
        except httpx.RequestError as exc:
            raise ProvisionerError(f"{method} {path} failed: {exc}") from exc

        if response.is_error:
            raise ProvisionerError(
                f"{method} {path} returned {response.status_code}: {response.text[:200]}"
            )
        return response

    async def issue_pass(
        self, *, template_id: str, member: dict[str, str], fields: dict[str, str]
    ) -> IssuedPass:
        # Field names must match the template placeholders exactly
        body = {
            **fields,
            "First_Name": member.get("first_name") or "Loyalty",
            "Last_Name": member.get("last_name") or "Member",
            "Email": member.get("email") or "",
        }
        response = await self._request("POST", f"/templates/{template_id}/pass", body)
        try:
            data = response.json()
        except ValueError as exc:
            raise ProvisionerError(
                f"Provisioner returned a non-JSON body: {response.text[:200]}"
            ) from exc
        if not isinstance(data, dict):
            raise ProvisionerError(
                f"Provisioner returned {type(data).__name__}, expected an object"
            )

        serial = data.get("serialNumber") or data.get("serial") or data.get("id")
        if not serial:
            raise ProvisionerError("Provisioner response did not include a serial")

        return IssuedPass(
            serial=str(serial),
            apple_url=data.get("appleUrl") or data.get("apple_url"),
            google_url=data.get("googleUrl") or data.get("google_url"),
        )

    async def update_pass(
        self, *, template_id: str, serial: str, fields: dict[str, str], push: bool
    ) -> None:
        await self._request(
            "PUT",
            f"/passes/{serial}/values",
            {"template_id": template_id, "values": fields, "push": push},
        )
