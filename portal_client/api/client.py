"""
Portal Client - API Client

Opérations métier du portail, exécutées via RetryingRequestExecutor:
    POST /usage/tokens (repli /tokens/usage)   enregistrement de consommation
    GET  /auth/users/me                        profil utilisateur
    GET  /sdk/prompts                          liste des prompts
    GET  /sdk/prompts/{id}                     détail d'un prompt
    GET  /sdk/prompts/{id}/versions            historique des versions
    POST /sdk/prompts/usage                    utilisation d'un prompt
    GET  /sdk/prompts/sync?since=              prompts modifiés depuis
"""

import time
from typing import Any, Dict, List, Optional, Sequence, Union

import httpx

from portal_client.core.errors import ServerError
from portal_client.logging import StructuredLogger
from portal_client.network import (
    EndpointSpec,
    ExecutionResult,
    IRequestExecutor,
    RetryPolicy,
)

TOKEN_USAGE_ENDPOINTS = EndpointSpec.of("/usage/tokens", "/tokens/usage")
CURRENT_USER_ENDPOINTS = EndpointSpec.of("/auth/users/me")
PROMPTS_ENDPOINTS = EndpointSpec.of("/sdk/prompts")
PROMPT_USAGE_ENDPOINTS = EndpointSpec.of("/sdk/prompts/usage")
PROMPT_SYNC_ENDPOINTS = EndpointSpec.of("/sdk/prompts/sync")


class PortalApiClient:
    """
    Client des opérations métier authentifiées.

    Le token n'est jamais manipulé ici: l'exécuteur ajoute
    Authorization et X-Correlation-ID à chaque tentative.

    Example:
        api = PortalApiClient(http_client, executor)
        result = await api.record_token_usage(1000, "claude-3-opus-20240229")
        assert result.success
    """

    DEFAULT_USAGE_CONTEXT: str = "portal-client"

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        executor: IRequestExecutor,
        policy: Optional[RetryPolicy] = None,
        logger: Optional[StructuredLogger] = None,
    ) -> None:
        """
        Args:
            http_client: Client httpx configuré avec base_url
            executor: Exécuteur avec retry/refresh/repli
            policy: Politique de retry des opérations (défaut de l'exécuteur sinon)
            logger: Logger structuré
        """
        self._http = http_client
        self._executor = executor
        self._policy = policy
        self._logger = logger or StructuredLogger("portal.api")

    async def record_token_usage(
        self,
        token_count: int,
        model_id: str,
        context: Optional[str] = None,
    ) -> ExecutionResult:
        """
        Enregistre une consommation de tokens.

        Args:
            token_count: Nombre de tokens consommés (>= 0)
            model_id: Identifiant du modèle
            context: Contexte d'usage (défaut: "portal-client")

        Returns:
            ExecutionResult; success si le serveur répond 2xx

        Raises:
            ValueError: Si token_count négatif ou model_id vide
        """
        if token_count < 0:
            raise ValueError("token_count must not be negative")
        if not model_id:
            raise ValueError("model_id cannot be empty")

        body = {
            "tokenCount": token_count,
            "modelId": model_id,
            "context": context or self.DEFAULT_USAGE_CONTEXT,
        }

        async def post(path: str, headers: Dict[str, str]) -> httpx.Response:
            return await self._http.post(path, json=body, headers=headers)

        result = await self._executor.execute(post, self._policy, TOKEN_USAGE_ENDPOINTS)
        if result.success:
            self._logger.info(
                "Token usage recorded",
                token_count=token_count,
                model_id=model_id,
                endpoint=result.endpoint,
            )
        else:
            self._logger.warn(
                "Token usage not recorded",
                token_count=token_count,
                model_id=model_id,
                error_type=type(result.error).__name__,
            )
        return result

    async def get_current_user(self) -> Dict[str, Any]:
        """
        Profil de l'utilisateur connecté.

        Raises:
            PortalClientError: Échec terminal de la requête
        """
        data = await self._get_json(CURRENT_USER_ENDPOINTS)
        user = data.get("user", data)
        return user if isinstance(user, dict) else {}

    async def get_prompts(
        self,
        category: Optional[str] = None,
        tags: Optional[Sequence[str]] = None,
    ) -> List[Dict[str, Any]]:
        """
        Liste des prompts, filtrés par catégorie et tags.

        Returns:
            Liste des prompts (vide si le serveur n'en renvoie pas)
        """
        params: Dict[str, str] = {}
        if category:
            params["category"] = category
        if tags:
            params["tags"] = ",".join(tags)

        data = await self._get_json(PROMPTS_ENDPOINTS, params)
        prompts = data.get("prompts")
        return prompts if isinstance(prompts, list) else []

    async def get_prompt(self, prompt_id: str) -> Optional[Dict[str, Any]]:
        """Détail d'un prompt (None si absent de la réponse)."""
        if not prompt_id:
            raise ValueError("prompt_id cannot be empty")
        data = await self._get_json(EndpointSpec.of(f"/sdk/prompts/{prompt_id}"))
        prompt = data.get("prompt")
        return prompt if isinstance(prompt, dict) else None

    async def get_prompt_versions(self, prompt_id: str) -> List[Dict[str, Any]]:
        """Historique des versions d'un prompt (vide si absent de la réponse)."""
        if not prompt_id:
            raise ValueError("prompt_id cannot be empty")
        data = await self._get_json(EndpointSpec.of(f"/sdk/prompts/{prompt_id}/versions"))
        versions = data.get("versions")
        return versions if isinstance(versions, list) else []

    async def record_prompt_usage(
        self,
        prompt_id: str,
        version_id: str,
        context: Optional[str] = None,
    ) -> ExecutionResult:
        """
        Enregistre l'utilisation d'une version de prompt.

        Args:
            prompt_id: Identifiant du prompt
            version_id: Identifiant de la version utilisée
            context: Contexte d'usage (défaut: "portal-client")

        Returns:
            ExecutionResult; success si le serveur répond 2xx

        Raises:
            ValueError: Si prompt_id ou version_id vide
        """
        if not prompt_id:
            raise ValueError("prompt_id cannot be empty")
        if not version_id:
            raise ValueError("version_id cannot be empty")

        body = {
            "promptId": prompt_id,
            "versionId": version_id,
            "context": context or self.DEFAULT_USAGE_CONTEXT,
        }

        async def post(path: str, headers: Dict[str, str]) -> httpx.Response:
            return await self._http.post(path, json=body, headers=headers)

        result = await self._executor.execute(post, self._policy, PROMPT_USAGE_ENDPOINTS)
        if not result.success:
            self._logger.warn(
                "Prompt usage not recorded",
                prompt_id=prompt_id,
                version_id=version_id,
                error_type=type(result.error).__name__,
            )
        return result

    async def get_sync_updates(
        self, since: Optional[Union[int, str]] = None
    ) -> Dict[str, Any]:
        """
        Prompts modifiés depuis la dernière synchronisation.

        Args:
            since: Horodatage de la dernière synchronisation (omis: tout)

        Returns:
            {"prompts": [...], "timestamp": ...}; timestamp en millisecondes
            epoch si le serveur n'en fournit pas

        Example:
            updates = await api.get_sync_updates()
            later = await api.get_sync_updates(since=updates["timestamp"])
        """
        params = {"since": str(since)} if since not in (None, "") else None
        data = await self._get_json(PROMPT_SYNC_ENDPOINTS, params)
        prompts = data.get("prompts")
        return {
            "prompts": prompts if isinstance(prompts, list) else [],
            "timestamp": data.get("timestamp") or int(time.time() * 1000),
        }

    async def _get_json(
        self, endpoints: EndpointSpec, params: Optional[Dict[str, str]] = None
    ) -> Dict[str, Any]:
        async def get(path: str, headers: Dict[str, str]) -> httpx.Response:
            return await self._http.get(path, params=params, headers=headers)

        result = await self._executor.execute(get, self._policy, endpoints)
        response = result.raise_for_result()
        try:
            data = response.json()
        except ValueError as e:
            raise ServerError(
                f"Invalid JSON response from {result.endpoint}: {e}",
                status_code=response.status_code,
            ) from e
        if not isinstance(data, dict):
            raise ServerError(
                f"Unexpected response body from {result.endpoint}",
                status_code=response.status_code,
            )
        return data
