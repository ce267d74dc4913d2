"""
TIERWATCH - HA - Probe Client

Sondes de santé HTTP et TCP, feuille I/O du moniteur.

Règles:
    - HTTP: GET sur le health path, succès = status dans [200, 399]
    - TCP: connexion établie dans le timeout (Db: port 27017 par défaut)
    - Redirections non suivies (comportement des sondes Load Balancer)
    - Ne lève jamais: tout échec devient ProbeResult.success=False
"""

import asyncio
import time
from datetime import datetime, timezone
from typing import Optional, Tuple

import httpx

from tierwatch.ha.interfaces import IProbeClient, ProbeErrorKind, ProbeKind, ProbeResult


class ProbeTargetError(Exception):
    """Cible de sonde mal formée."""

    pass


class ProbeClient(IProbeClient):
    """
    Client de sonde HTTP/TCP.

    Le client httpx est injectable (tests avec httpx.MockTransport,
    connection pooling en production). Sans client injecté, un
    AsyncClient éphémère est ouvert pour chaque sonde.

    Example:
        client = ProbeClient()
        result = await client.probe("http://10.0.1.4/health", ProbeKind.HTTP, "vm-web-1")
    """

    DEFAULT_TIMEOUT_SECONDS: float = 5.0
    DEFAULT_DB_PORT: int = 27017

    # Plage de status considérée healthy (comme Application Gateway)
    MIN_HEALTHY_STATUS: int = 200
    MAX_HEALTHY_STATUS: int = 399

    def __init__(self, http_client: Optional[httpx.AsyncClient] = None) -> None:
        """
        Initialise le client de sonde.

        Args:
            http_client: Client httpx partagé (optionnel)
        """
        self._http_client = http_client

    @staticmethod
    def http_url(endpoint: str, health_path: str = "/health") -> str:
        """
        Construit l'URL de sonde HTTP d'un membre.

        Args:
            endpoint: Adresse du membre (avec ou sans schéma)
            health_path: Chemin du health check

        Returns:
            URL complète, ex: http://10.0.1.4/health
        """
        base = endpoint.strip().rstrip("/")
        if "://" not in base:
            base = f"http://{base}"
        path = health_path if health_path.startswith("/") else f"/{health_path}"
        return f"{base}{path}"

    @classmethod
    def parse_tcp_target(cls, endpoint: str) -> Tuple[str, int]:
        """
        Extrait (host, port) d'une cible TCP.

        Accepte "host:port", "host" ou une URI mongodb:// (credentials
        ignorés, premier hôte de la seed list).

        Raises:
            ProbeTargetError: Si la cible est vide ou le port invalide
        """
        target = endpoint.strip()
        if "://" in target:
            target = target.split("://", 1)[1]
            target = target.split("/", 1)[0]
            target = target.rsplit("@", 1)[-1]
            target = target.split(",", 1)[0]

        if not target:
            raise ProbeTargetError(f"Empty TCP probe target: {endpoint!r}")

        host, sep, port = target.rpartition(":")
        if not sep:
            return target, cls.DEFAULT_DB_PORT
        if not host or not port.isdigit():
            raise ProbeTargetError(f"Invalid TCP probe target: {endpoint!r}")

        return host, int(port)

    async def probe(
        self,
        endpoint: str,
        kind: ProbeKind,
        member_id: str = "",
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> ProbeResult:
        """
        Sonde un endpoint.

        Args:
            endpoint: URL (HTTP) ou host:port / URI mongodb (TCP)
            kind: Type de sonde
            member_id: Membre sondé
            timeout: Timeout en secondes

        Returns:
            ProbeResult normalisé (jamais d'exception)
        """
        timestamp = datetime.now(timezone.utc)
        start = time.perf_counter()

        def elapsed_ms() -> float:
            return round((time.perf_counter() - start) * 1000, 3)

        def failure(error_kind: ProbeErrorKind, detail: str, status_code: Optional[int] = None) -> ProbeResult:
            return ProbeResult(
                member_id=member_id,
                timestamp=timestamp,
                success=False,
                latency_ms=elapsed_ms(),
                error_kind=error_kind,
                status_code=status_code,
                detail=detail,
            )

        try:
            if kind == ProbeKind.HTTP:
                response = await asyncio.wait_for(self._get(endpoint, timeout), timeout=timeout)
                status = response.status_code
                if not self.MIN_HEALTHY_STATUS <= status <= self.MAX_HEALTHY_STATUS:
                    return failure(ProbeErrorKind.BAD_STATUS, f"HTTP {status}", status_code=status)
                return ProbeResult(
                    member_id=member_id,
                    timestamp=timestamp,
                    success=True,
                    latency_ms=elapsed_ms(),
                    status_code=status,
                )

            if kind == ProbeKind.TCP:
                host, port = self.parse_tcp_target(endpoint)
                await asyncio.wait_for(self._connect(host, port), timeout=timeout)
                return ProbeResult(
                    member_id=member_id,
                    timestamp=timestamp,
                    success=True,
                    latency_ms=elapsed_ms(),
                )

            return failure(ProbeErrorKind.UNKNOWN, f"Unsupported probe kind: {kind}")

        except (httpx.TimeoutException, asyncio.TimeoutError):
            return failure(ProbeErrorKind.TIMEOUT, f"No response within {timeout}s")
        except (httpx.ConnectError, ConnectionRefusedError) as e:
            return failure(ProbeErrorKind.CONNECTION_REFUSED, str(e) or "Connection refused")
        except Exception as e:
            return failure(ProbeErrorKind.UNKNOWN, f"{type(e).__name__}: {e}")

    async def _get(self, url: str, timeout: float) -> httpx.Response:
        """GET sans suivre les redirections."""
        if self._http_client is not None:
            return await self._http_client.get(url, timeout=timeout, follow_redirects=False)

        async with httpx.AsyncClient(timeout=timeout, follow_redirects=False) as client:
            return await client.get(url)

    async def _connect(self, host: str, port: int) -> None:
        """Ouvre puis referme une connexion TCP."""
        _, writer = await asyncio.open_connection(host, port)
        writer.close()
        await writer.wait_closed()
