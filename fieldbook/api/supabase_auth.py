"""
Supabase Auth admin client
Looks up user accounts so bookings can be linked to them by email
"""

import os
import logging
from typing import Dict, List, Any, Optional
import httpx

logger = logging.getLogger(__name__)


class SupabaseAuthError(Exception):
    """Raised when the Supabase admin API cannot be reached or refuses the request"""


class SupabaseAuthClient:
    """
    Thin wrapper over the GoTrue admin API (``/auth/v1/admin/users``)

    Requires the service role key; never expose it to the browser.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        service_role_key: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        per_page: int = 200,
        max_pages: int = 50,
    ):
        url = url if url is not None else (os.getenv("SUPABASE_URL") or os.getenv("NEXT_PUBLIC_SUPABASE_URL"))
        self.url = url.rstrip("/") if url else None
        self.service_role_key = (
            service_role_key if service_role_key is not None else os.getenv("SUPABASE_SERVICE_ROLE")
        )
        self.transport = transport
        self.per_page = per_page
        self.max_pages = max_pages

    @property
    def configured(self) -> bool:
        return bool(self.url and self.service_role_key)

    def _client(self) -> httpx.AsyncClient:
        if not self.configured:
            raise SupabaseAuthError("Missing Supabase configuration")
        return httpx.AsyncClient(
            base_url=f"{self.url}/auth/v1",
            headers={
                "apikey": self.service_role_key,
                "Authorization": f"Bearer {self.service_role_key}",
            },
            transport=self.transport,
            timeout=15.0,
        )

    async def list_users(self) -> List[Dict[str, Any]]:
        """Fetch every user, following pages until a short page comes back"""
        users: List[Dict[str, Any]] = []
        async with self._client() as client:
            for page in range(1, self.max_pages + 1):
                try:
                    response = await client.get(
                        "/admin/users",
                        params={"page": page, "per_page": self.per_page},
                    )
                except httpx.HTTPError as e:
                    raise SupabaseAuthError(f"Admin API request failed: {e}") from e
                if response.is_error:
                    raise SupabaseAuthError(f"Admin API failed: HTTP {response.status_code} {response.text}")

                data = response.json()
                batch = data.get("users", []) if isinstance(data, dict) else data
                users.extend(batch)
                if len(batch) < self.per_page:
                    break
        return users

    async def find_user_by_email(self, email: Optional[str]) -> Optional[Dict[str, Any]]:
        """Find a user by email (case-insensitive); None when not found"""
        if not email:
            return None
        target = email.strip().lower()
        for user in await self.list_users():
            if (user.get("email") or "").strip().lower() == target:
                return user
        return None
