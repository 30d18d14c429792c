"""
Generic ordered-fallback routine used by the classification and summary cascades.

Providers are tried strictly in order. Each attempt is bounded by a timeout;
a timeout, a provider error or a payload rejected by the validator moves on to
the next provider. When every provider has failed the deterministic fallback
produces the result. Provider failures are logged and returned on the outcome
for inspection, never raised.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Generic, List, Optional, Sequence, TypeVar

from ..utils.error_codes import PipelineError, ProviderUnavailable, create_error_result

T = TypeVar('T')

FALLBACK_SOURCE = 'fallback'

DEFAULT_TIMEOUT_SECONDS = 8.0

module_logger = logging.getLogger(__name__)


@dataclass
class CascadeOutcome(Generic[T]):
    value: T
    source: str
    failures: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def used_fallback(self) -> bool:
        return self.source == FALLBACK_SOURCE


def provider_name(provider: Any) -> str:
    return getattr(provider, 'name', None) or type(provider).__name__


async def attempt_with_fallback(
    providers: Sequence[Any],
    call: Callable[[Any], Awaitable[Any]],
    validate: Callable[[Any], T],
    fallback: Callable[[], T],
    timeout: Optional[float] = DEFAULT_TIMEOUT_SECONDS,
    label: str = 'cascade',
    logger: Optional[logging.Logger] = None,
) -> CascadeOutcome[T]:
    """
    Try each provider in order and return the first validated result.

    Args:
        providers: Ordered provider list
        call: Coroutine function invoking one provider and returning its raw answer
        validate: Turns a raw answer into a trusted value; raises to reject it
        fallback: Deterministic result used when every provider failed
        timeout: Seconds allowed per provider attempt (None for no bound)
        label: Name used in log lines ('classification', 'summary')

    Returns:
        CascadeOutcome with the value, the provider name (or FALLBACK_SOURCE)
        and the recorded failures
    """
    log = logger or module_logger
    failures: List[Dict[str, Any]] = []

    for provider in providers:
        name = provider_name(provider)
        try:
            raw = await asyncio.wait_for(call(provider), timeout=timeout)
            value = validate(raw)
        except asyncio.TimeoutError:
            error = ProviderUnavailable(f"{name} timed out after {timeout}s", {'provider': name})
        except PipelineError as e:
            error = e
        except Exception as e:
            error = PipelineError(f"{name} failed: {e}", {'provider': name})
        else:
            if failures:
                log.info(f"{label}: {name} succeeded after {len(failures)} failed provider(s)")
            return CascadeOutcome(value=value, source=name, failures=failures)

        log.warning(f"{label}: provider {name} failed ({error.error_code.value}): {error.message}")
        failures.append(create_error_result(error.error_code, error.message, dict(error.details, provider=name)))

    if providers:
        log.warning(f"{label}: all {len(providers)} providers failed, using deterministic fallback")
    return CascadeOutcome(value=fallback(), source=FALLBACK_SOURCE, failures=failures)
