"""
Portal Client - HTTP Auth Transport

Appels HTTP d'authentification (httpx):
    POST <base>/auth/login          {email, password}      → {accessToken, refreshToken, user}
    POST <base>/auth/refresh-token  {refreshToken}         → {accessToken, refreshToken}
    POST <base>/auth/logout         {refreshToken}         → {success}

clientId/clientSecret sont ajoutés aux corps login/refresh s'ils sont configurés.
"""

from typing import Any, Dict, Optional

import httpx

from portal_client.core.errors import (
    InvalidCredentials,
    NetworkError,
    RefreshTokenExpired,
    ServerError,
    error_for_status,
)

from .interfaces import IAuthTransport, LoginResult, TokenPair


class HttpAuthTransport(IAuthTransport):
    """
    Transport d'authentification basé sur httpx.AsyncClient.

    Le client HTTP peut être injecté (tests via httpx.MockTransport);
    sinon il est créé et possédé par le transport.
    """

    LOGIN_PATH: str = "/auth/login"
    REFRESH_PATH: str = "/auth/refresh-token"
    LOGOUT_PATH: str = "/auth/logout"

    def __init__(
        self,
        base_url: str,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        timeout_seconds: float = 15.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """
        Args:
            base_url: URL de base de l'API (ex: https://portal/api)
            client_id: Identifiant client (optionnel)
            client_secret: Secret client (optionnel)
            timeout_seconds: Timeout HTTP
            http_client: Client httpx injecté (optionnel)
        """
        if not base_url or not base_url.strip():
            raise ValueError("base_url cannot be empty")

        self._client_id = client_id
        self._client_secret = client_secret
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"), timeout=timeout_seconds
        )

    async def login(self, email: str, password: str) -> LoginResult:
        """
        Authentifie par email/mot de passe.

        Raises:
            InvalidCredentials: 400/401/403
            ServerError: 5xx ou réponse sans tokens
            NetworkError: Connexion impossible ou timeout
        """
        body = self._with_client_credentials({"email": email, "password": password})
        response = await self._post(self.LOGIN_PATH, body)

        if response.status_code in (400, 401, 403):
            raise InvalidCredentials(
                "Invalid email or password", status_code=response.status_code
            )
        self._raise_for_status(response)

        data = self._json(response)
        try:
            tokens = TokenPair(
                access_token=data.get("accessToken"),
                refresh_token=data.get("refreshToken"),
            )
        except ValueError as e:
            raise ServerError(f"Invalid login response: {e}", status_code=response.status_code) from e

        user = data.get("user") or {}
        return LoginResult(tokens=tokens, user=user if isinstance(user, dict) else {})

    async def refresh(self, refresh_token: str) -> TokenPair:
        """
        Échange le refresh token contre une nouvelle paire.

        Si le serveur ne renvoie pas de nouveau refresh token, l'ancien
        est conservé dans la nouvelle paire.

        Raises:
            RefreshTokenExpired: 401/403 (refresh token rejeté)
            ServerError: 5xx ou réponse sans access token
            NetworkError: Connexion impossible ou timeout
        """
        body = self._with_client_credentials({"refreshToken": refresh_token})
        response = await self._post(self.REFRESH_PATH, body)

        if response.status_code in (401, 403):
            raise RefreshTokenExpired(
                "Refresh token rejected", status_code=response.status_code
            )
        self._raise_for_status(response)

        data = self._json(response)
        try:
            return TokenPair(
                access_token=data.get("accessToken"),
                refresh_token=data.get("refreshToken") or refresh_token,
            )
        except ValueError as e:
            raise ServerError(f"Invalid refresh response: {e}", status_code=response.status_code) from e

    async def logout(self, refresh_token: str) -> None:
        """Révoque le refresh token côté serveur."""
        response = await self._post(self.LOGOUT_PATH, {"refreshToken": refresh_token})
        self._raise_for_status(response)

    async def aclose(self) -> None:
        """Ferme le client HTTP s'il appartient au transport."""
        if self._owns_client:
            await self._client.aclose()

    def _with_client_credentials(self, body: Dict[str, Any]) -> Dict[str, Any]:
        if self._client_id and self._client_secret:
            body["clientId"] = self._client_id
            body["clientSecret"] = self._client_secret
        return body

    async def _post(self, path: str, body: Dict[str, Any]) -> httpx.Response:
        try:
            return await self._client.post(path, json=body)
        except httpx.TimeoutException as e:
            raise NetworkError(f"Timeout calling {path}: {e}") from e
        except httpx.TransportError as e:
            raise NetworkError(f"Connection error calling {path}: {e}") from e

    def _raise_for_status(self, response: httpx.Response) -> None:
        if response.status_code < 400:
            return
        raise error_for_status(
            response.status_code,
            f"HTTP {response.status_code} on {response.request.url.path}",
        )

    def _json(self, response: httpx.Response) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError as e:
            raise ServerError(
                f"Invalid JSON response: {e}", status_code=response.status_code
            ) from e
        if not isinstance(data, dict):
            raise ServerError("Unexpected response body", status_code=response.status_code)
        return data
