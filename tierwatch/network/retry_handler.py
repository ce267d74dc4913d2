"""
TIERWATCH - Network - Retry Handler

Gestion des retries avec backoff exponentiel.

Utilisé par le FailoverController pour les appels au backend pool:
5 tentatives max, délai 1s → 2s → 4s → 8s, plafonné à 30s. Aucune
tentative au-delà de max_attempts.
"""

import asyncio
from typing import Any, Callable, Dict, Optional, TypeVar

from .interfaces import IRetryHandler, RetryConfig, RetryObserver, RetryResult

T = TypeVar("T")


class RetryHandler(IRetryHandler):
    """
    Gestion retries avec backoff exponentiel.

    Compte les appels par issue (premier essai, après retry, épuisés,
    non retryables); exposé dans le status du FailoverController.
    """

    def __init__(self, default_config: Optional[RetryConfig] = None) -> None:
        """
        Args:
            default_config: Politique utilisée quand execute_with_retry
                n'en reçoit pas
        """
        self._default_config = default_config or RetryConfig()
        self._outcomes: Dict[str, int] = dict.fromkeys(
            ("first_try", "after_retry", "exhausted", "not_retryable", "failed_attempts"), 0
        )

    async def execute_with_retry(
        self,
        func: Callable[..., T],
        *args: Any,
        config: Optional[RetryConfig] = None,
        observer: Optional[RetryObserver] = None,
        **kwargs: Any,
    ) -> RetryResult:
        """
        Exécute func jusqu'au succès ou à max_attempts tentatives.

        Attente avant la tentative n+1: calculate_delay(n). Pas d'attente
        après la dernière tentative, ni après une erreur non retryable.

        Args:
            func: Fonction à exécuter (sync ou async)
            *args: Arguments positionnels
            config: Politique de retry (défaut: celle du handler)
            observer: Callback (attempt, error, next_delay) après chaque échec
            **kwargs: Arguments nommés

        Returns:
            RetryResult; les erreurs de func n'en sortent jamais
        """
        policy = config or self._default_config
        waited = 0.0
        last_error: Optional[Exception] = None
        attempt = 0

        while attempt < policy.max_attempts:
            attempt += 1
            try:
                value = func(*args, **kwargs)
                if asyncio.iscoroutine(value):
                    value = await value
            except Exception as e:
                last_error = e
                self._outcomes["failed_attempts"] += 1

                if not self.is_retryable(e, policy):
                    if observer:
                        observer(attempt, e, 0.0)
                    self._outcomes["not_retryable"] += 1
                    return RetryResult(False, None, attempt, waited, e)

                delay = self.calculate_delay(attempt - 1, policy) if attempt < policy.max_attempts else 0.0
                if observer:
                    observer(attempt, e, delay)
                if delay:
                    waited += delay
                    await asyncio.sleep(delay)
                continue

            self._outcomes["first_try" if attempt == 1 else "after_retry"] += 1
            return RetryResult(True, value, attempt, waited, None)

        self._outcomes["exhausted"] += 1
        return RetryResult(False, None, attempt, waited, last_error)

    def calculate_delay(self, attempt: int, config: RetryConfig) -> float:
        """
        Délai avant la tentative suivante.

        Args:
            attempt: Tentative échouée (0 = la première)
            config: Politique de retry

        Returns:
            min(initial_delay * base^attempt, max_delay) en secondes
        """
        return min(config.initial_delay * config.exponential_base**attempt, config.max_delay)

    def is_retryable(self, error: Exception, config: RetryConfig) -> bool:
        return isinstance(error, config.retryable_exceptions)

    def get_outcomes(self) -> Dict[str, int]:
        """Compteurs par issue des appels exécutés."""
        return dict(self._outcomes)
