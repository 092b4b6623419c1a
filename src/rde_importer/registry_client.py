"""
Async client for the target registry admin API.

Create calls map the HTTP result onto a CommandOutcome instead of raising,
so one rejected command never interrupts a stage:

- 201 (200 accepted): CREATED
- 400/409 whose error mentions "already exists" or "duplicate": ALREADY_EXISTS
- anything else, including exhausted retries: FAILED

Lookups (TLD, registrar) raise ApiError for unexpected statuses.
"""

from dataclasses import asdict, dataclass
from typing import Any, Optional
from urllib.parse import quote

import httpx

from .audit_logger import AuditLogger
from .config import ApiConfig, RetryConfig
from .enums import CommandOutcome, EntityKind, LogLevel
from .exceptions import ApiError, RecordValidationError, TLDNotFoundError
from .models import RawRegistrar
from .retry_manager import RetryManager

ENDPOINTS = {
    EntityKind.CONTACT: "/contacts",
    EntityKind.HOST: "/hosts",
    EntityKind.DOMAIN: "/domains",
    EntityKind.NNDN: "/nndns",
}

# Fields that only exist for the import itself and are never sent
LOCAL_FIELDS = ("host_links", "duplicate_of")


@dataclass
class CommitOutcome:
    """Result of one create or link call."""

    outcome: CommandOutcome
    message: str = ""
    status_code: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome in (CommandOutcome.CREATED, CommandOutcome.ALREADY_EXISTS)


def command_payload(command: Any) -> dict:
    """JSON body for a create command."""
    payload = asdict(command)
    for name in LOCAL_FIELDS:
        payload.pop(name, None)
    return payload


def registrar_lookup_path(gurid: int, tld: str) -> str:
    """
    API path that identifies the registrar for a GurID.

    ICANN reserves a few IANA IDs for registry-operator-held objects; those
    registrars are addressed by fixed or TLD-scoped client IDs.
    """
    tld = tld.lower()
    if gurid == 9997:
        return "/registrars/9997-ICANN-SLAM"
    if gurid == 9995:
        return "/registrars/9995-ICANN-RST"
    if gurid == 9998:
        return f"/registrars/9998.{tld}"
    if gurid in (9999, 119, 0):
        return f"/registrars/9999.{tld}"
    return f"/registrars/gurid/{gurid}"


def _error_text(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text
    if isinstance(body, dict) and "error" in body:
        return str(body["error"])
    return response.text


class RegistryAPIClient:
    """
    Async client for the target registry.

    Use as an async context manager; `transport` lets tests plug in an
    `httpx.MockTransport`.
    """

    COMPONENT = "RegistryAPIClient"
    ALREADY_EXISTS_MARKERS = ("already exists", "duplicate")

    def __init__(
        self,
        config: ApiConfig,
        retry_manager: Optional[RetryManager] = None,
        logger: Optional[AuditLogger] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            config: API base URL, bearer token and timeout
            retry_manager: Retry policy for transient failures
            logger: Optional audit logger
            transport: Optional httpx transport override
        """
        self._config = config
        self._retry = retry_manager or RetryManager(RetryConfig())
        self._logger = logger
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "RegistryAPIClient":
        self._ensure_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {"Accept": "application/json"}
            if self._config.token:
                headers["Authorization"] = f"Bearer {self._config.token}"
            self._client = httpx.AsyncClient(
                base_url=self._config.base_url.rstrip("/"),
                headers=headers,
                timeout=httpx.Timeout(self._config.timeout),
                transport=self._transport,
            )
        return self._client

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[dict] = None,
        params: Optional[dict] = None,
    ) -> httpx.Response:
        """
        Send a request, retrying transient failures.

        Raises:
            ApiError: If the request still fails after all retries
        """
        client = self._ensure_client()

        async def send() -> httpx.Response:
            response = await client.request(method, path, json=json, params=params)
            if self._retry.is_retryable_status(response.status_code):
                raise ApiError(
                    code="transient_status",
                    message=f"{method} {path} returned {response.status_code}",
                    details={"body": response.text[:500]},
                    status_code=response.status_code,
                )
            return response

        outcome = await self._retry.execute_with_retry(send)
        if outcome.success:
            return outcome.result

        error = outcome.last_error
        if isinstance(error, ApiError):
            raise error
        if isinstance(error, httpx.TimeoutException):
            code = "timeout"
        else:
            code = "network_error"
        raise ApiError(
            code=code,
            message=f"{method} {path} failed after {outcome.attempts} attempts: {error}",
            details={"attempts": outcome.attempts},
        )

    def _classify(self, response: httpx.Response, success_statuses: tuple[int, ...]) -> CommitOutcome:
        if response.status_code in success_statuses:
            return CommitOutcome(CommandOutcome.CREATED, status_code=response.status_code)
        error = _error_text(response)
        if response.status_code in (400, 409) and any(
            marker in error.lower() for marker in self.ALREADY_EXISTS_MARKERS
        ):
            return CommitOutcome(CommandOutcome.ALREADY_EXISTS, error, response.status_code)
        return CommitOutcome(
            CommandOutcome.FAILED,
            f"{response.status_code} {response.reason_phrase}: {error}".strip(),
            response.status_code,
        )

    async def create(self, kind: EntityKind, payload: dict) -> CommitOutcome:
        """
        Submit a create command.

        Args:
            kind: Entity kind, selecting the endpoint
            payload: JSON body (see `command_payload`)

        Returns:
            CommitOutcome; never raises for API or network failures
        """
        try:
            response = await self._request("POST", ENDPOINTS[kind], json=payload)
        except ApiError as e:
            return CommitOutcome(CommandOutcome.FAILED, e.message, e.status_code)
        return self._classify(response, (200, 201))

    async def link_host(self, domain_name: str, host_name: str, sponsor: str = "") -> CommitOutcome:
        """
        Attach a host to a domain.

        `force` overrides update prohibitions carried over from the deposit;
        `clid` selects which sponsor's copy of the host is linked.
        """
        params = {"force": "true"}
        if sponsor:
            params["clid"] = sponsor
        path = f"/domains/{quote(domain_name, safe='')}/hostname/{quote(host_name, safe='')}"
        try:
            response = await self._request("POST", path, params=params)
        except ApiError as e:
            return CommitOutcome(CommandOutcome.FAILED, e.message, e.status_code)
        return self._classify(response, (200, 204))

    async def get_tld(self, name: str) -> dict:
        """
        Fetch a TLD.

        Raises:
            TLDNotFoundError: If the TLD does not exist in the target registry
            ApiError: For any other failure
        """
        response = await self._request("GET", f"/tlds/{quote(name, safe='')}")
        if response.status_code == 200:
            return response.json()
        if response.status_code == 404:
            raise TLDNotFoundError(
                code="tld_not_found",
                message=f"TLD {name!r} does not exist in the target registry",
                details={"tld": name},
                status_code=404,
            )
        raise ApiError(
            code="unexpected_status",
            message=f"Error fetching TLD {name!r}: {response.status_code}",
            details={"tld": name, "body": _error_text(response)},
            status_code=response.status_code,
        )

    async def get_registrar(self, clid: str) -> Optional[dict]:
        """Fetch a registrar by client ID; None if it does not exist."""
        return await self._get_registrar_path(f"/registrars/{quote(clid, safe='')}")

    async def _get_registrar_path(self, path: str) -> Optional[dict]:
        response = await self._request("GET", path)
        if response.status_code == 200:
            return response.json()
        if response.status_code == 404:
            return None
        raise ApiError(
            code="unexpected_status",
            message=f"GET {path} returned {response.status_code}",
            details={"body": _error_text(response)},
            status_code=response.status_code,
        )

    async def resolve_registrar(self, registrar: RawRegistrar, tld: str) -> Optional[str]:
        """
        Look up the target client ID for a deposit registrar by GurID.

        Returns:
            The target clid, or None if the registry does not know the registrar

        Raises:
            RecordValidationError: If the registrar's GurID is not numeric
            ApiError: For unexpected API failures
        """
        raw_gurid = registrar.gurid.strip()
        try:
            gurid = int(raw_gurid) if raw_gurid else 0
        except ValueError:
            raise RecordValidationError(
                code="invalid_gurid",
                message=f"Registrar {registrar.id} has non-numeric GurID {registrar.gurid!r}",
                details={"registrar": registrar.id},
            )

        path = registrar_lookup_path(gurid, tld)
        data = await self._get_registrar_path(path)
        if data is None:
            self._log(LogLevel.DEBUG, f"Registrar {registrar.id} not found at {path}")
            return None
        clid = data.get("ClID") or data.get("clid")
        return str(clid) if clid else None

    def _log(self, level: LogLevel, message: str, data: Optional[dict] = None) -> None:
        if self._logger:
            self._logger.log(level, self.COMPONENT, message, data)
