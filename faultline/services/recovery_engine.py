"""
Recovery engine.

Holds an ordered registry of recovery strategies per concrete Failure type and
runs them, one pass per request, until one succeeds.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Type

from faultline.models.failure import Failure
from faultline.models.recovery import RecoveryResult
from faultline.utils.logging import get_logger, log_internal_failure

logger = get_logger(__name__)

Operation = Callable[[], Any]


class RecoveryStrategy(ABC):
    """Abstract base class for recovery strategies."""

    @property
    def name(self) -> str:
        return type(self).__name__

    @abstractmethod
    async def attempt(
        self,
        failure: Failure,
        operation: Optional[Operation] = None,
    ) -> RecoveryResult:
        """
        Try to recover from a failure.

        Args:
            failure: The failure to recover from
            operation: Optional zero-argument callable (sync or async) that
                produced the failure and may be re-run

        Returns:
            RecoveryResult describing the outcome
        """


class RecoveryEngine:
    """
    Runs registered strategies for a failure in registration order.

    Lookup is by the failure's exact type: a strategy registered for
    NetworkFailure is not offered a subclass of it. Each strategy runs under
    `strategy_timeout`; one that raises or times out counts as failed and the
    next strategy is tried.

    Args:
        strategy_timeout: Seconds each strategy may run
    """

    def __init__(self, strategy_timeout: float = 30.0):
        self.strategy_timeout = strategy_timeout
        self.invocations: Dict[str, int] = {}
        self._strategies: Dict[Type[Failure], List[RecoveryStrategy]] = {}

    def register(self, failure_type: Type[Failure], strategy: RecoveryStrategy) -> None:
        """Append a strategy for one concrete Failure type."""
        if not (isinstance(failure_type, type) and issubclass(failure_type, Failure)):
            raise TypeError(f"{failure_type!r} is not a Failure type")
        self._strategies.setdefault(failure_type, []).append(strategy)
        logger.debug(
            f"Registered recovery strategy {strategy.name} for {failure_type.__name__}",
            extra={"strategy": strategy.name, "failure_type": failure_type.__name__},
        )

    def strategies_for(self, failure_type: Type[Failure]) -> List[RecoveryStrategy]:
        return list(self._strategies.get(failure_type, []))

    def has_strategies(self, failure: Failure) -> bool:
        return bool(self._strategies.get(type(failure)))

    async def recover(
        self,
        failure: Failure,
        operation: Optional[Operation] = None,
    ) -> RecoveryResult:
        """
        Offer a failure to each registered strategy until one succeeds.

        Args:
            failure: Failure to recover from
            operation: Optional operation strategies may re-run

        Returns:
            The first successful result, otherwise a failed result. When no
            strategy is registered the result has ``attempted=False``.
        """
        strategies = self.strategies_for(type(failure))
        if not strategies:
            return RecoveryResult(
                success=False,
                message=f"No recovery strategy registered for {type(failure).__name__}",
                attempted=False,
            )

        reasons: List[str] = []
        for strategy in strategies:
            self.invocations[strategy.name] = self.invocations.get(strategy.name, 0) + 1
            try:
                result = await asyncio.wait_for(
                    strategy.attempt(failure, operation),
                    timeout=self.strategy_timeout,
                )
            except asyncio.TimeoutError:
                logger.warning(
                    f"Recovery strategy {strategy.name} timed out after {self.strategy_timeout}s",
                    extra={"strategy": strategy.name, "failure_id": failure.failure_id},
                )
                reasons.append(f"{strategy.name}: timed out")
                continue
            except Exception as e:
                log_internal_failure(
                    logger,
                    f"Recovery strategy {strategy.name} raised",
                    e,
                    strategy=strategy.name,
                    failure_id=failure.failure_id,
                )
                reasons.append(f"{strategy.name}: {e}")
                continue

            if result.success:
                logger.info(
                    f"Recovered {type(failure).__name__} with {strategy.name}",
                    extra={"strategy": strategy.name, "failure_id": failure.failure_id},
                )
                return result.model_copy(update={"strategy": strategy.name})
            reasons.append(f"{strategy.name}: {result.message}")

        return RecoveryResult(
            success=False,
            message="; ".join(reasons),
            data={"strategies_tried": [strategy.name for strategy in strategies]},
            strategy=strategies[-1].name,
        )
