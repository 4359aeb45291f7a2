"""Authenticated-user state for client applications.

One ``AuthSession`` is created by the top-level application and handed to
whatever needs the current user; nothing reads it from a global.
"""

from __future__ import annotations

from typing import Optional

import httpx
from loguru import logger

from crm.client.api import CrmApiClient
from crm.schemas.auth import UserOut


class AuthSession:
    def __init__(self, api: CrmApiClient):
        self._api = api
        self.user: Optional[UserOut] = None
        self.is_authenticated = False
        self.is_loading = False

    async def start(self) -> None:
        """Fetch the current user; any failure leaves the session signed out."""

        self.is_loading = True
        try:
            current = await self._api.get_current_user()
            self.user = current.user if current.is_authenticated else None
            self.is_authenticated = self.user is not None
        except httpx.HTTPError as exc:
            logger.bind(error=str(exc)).warning("current_user_fetch_failed")
            self._clear()
        finally:
            self.is_loading = False

    async def sign_in(self, username: str, password: str) -> None:
        await self._api.login(username, password)
        await self.start()

    async def logout(self) -> None:
        """Tell the server, then drop local state even if the call fails."""

        try:
            await self._api.logout()
        except httpx.HTTPError as exc:
            logger.bind(error=str(exc)).warning("logout_request_failed")
        finally:
            self._clear()

    def _clear(self) -> None:
        self.user = None
        self.is_authenticated = False
