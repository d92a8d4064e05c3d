"""
Mutations

A Mutation performs one write and, only if the write succeeds, invalidates
the cache keys it declares. Writer errors are captured as state rather
than raised, so a view can render them (toast) and offer a manual retry.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, Optional, Sequence, Union

from edutech.cache.config import RetryConfig
from edutech.cache.invalidation import InvalidationRequest, InvalidationResult
from edutech.cache.query_client import QueryClient
from edutech.exceptions import ValidationError


logger = logging.getLogger(__name__)

Writer = Callable[..., Awaitable[Any]]
KeysSpec = Union[Sequence[Any], Callable[..., Iterable[Any]]]


class MutationStatus(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class MutationState:
    """Snapshot of the latest mutate() call."""
    status: MutationStatus = MutationStatus.IDLE
    data: Any = None
    error: Optional[BaseException] = None
    invalidation: Optional[InvalidationResult] = None

    @property
    def is_pending(self) -> bool:
        return self.status == MutationStatus.PENDING

    @property
    def is_success(self) -> bool:
        return self.status == MutationStatus.SUCCESS

    @property
    def is_error(self) -> bool:
        return self.status == MutationStatus.ERROR

    @property
    def error_message(self) -> Optional[str]:
        if self.error is None:
            return None
        return getattr(self.error, "message", None) or str(self.error) or "Something went wrong"


class Mutation:
    """
    A write plus the cache keys it makes stale.

    Usage:
        approve = Mutation(
            client,
            lambda course_id: api.post("/api/admin/courses/bulk/publish", {"ids": [course_id]}),
            invalidates=[("/api/courses",)],
            on_error=lambda error, *args: toast(error.message),
        )
        state = await approve.mutate("c-42")
    """

    def __init__(
        self,
        client: QueryClient,
        writer: Writer,
        invalidates: KeysSpec = (),
        *,
        validate: Optional[Callable[..., None]] = None,
        on_success: Optional[Callable[..., Any]] = None,
        on_error: Optional[Callable[..., Any]] = None,
        on_settled: Optional[Callable[..., Any]] = None,
        retry: int = 0,
        retry_config: Optional[RetryConfig] = None,
        name: Optional[str] = None,
    ):
        self._client = client
        self._writer = writer
        self._invalidates = invalidates
        self._validate = validate
        self._on_success = on_success
        self._on_error = on_error
        self._on_settled = on_settled
        self._retry = retry_config or RetryConfig(max_retries=retry)
        self.name = name or getattr(writer, "__name__", "mutation")
        self._state = MutationState()

    def __repr__(self):
        return f"<Mutation {self.name} {self._state.status.value}>"

    @property
    def state(self) -> MutationState:
        return self._state

    @property
    def status(self) -> MutationStatus:
        return self._state.status

    def reset(self) -> None:
        self._state = MutationState()

    def _keys_for(self, result: Any, args: tuple, kwargs: dict) -> list:
        if callable(self._invalidates):
            return list(self._invalidates(result, *args, **kwargs) or ())
        return list(self._invalidates)

    async def _call_hook(self, hook: Optional[Callable[..., Any]], *args, **kwargs) -> None:
        if hook is None:
            return
        try:
            outcome = hook(*args, **kwargs)
            if asyncio.iscoroutine(outcome):
                await outcome
        except Exception:
            logger.exception(f"Mutation hook failed for {self.name}")

    async def _write(self, args: tuple, kwargs: dict) -> Any:
        attempt = 0
        while True:
            try:
                return await self._writer(*args, **kwargs)
            except ValidationError:
                raise
            except Exception as e:
                if attempt >= self._retry.max_retries:
                    raise
                delay = self._retry.delay_for(attempt)
                attempt += 1
                logger.warning(
                    f"Mutation {self.name} failed (attempt {attempt}/"
                    f"{self._retry.max_retries + 1}): {e}. Retrying in {delay}s..."
                )
                await asyncio.sleep(delay)

    async def mutate(self, *args, **kwargs) -> MutationState:
        """
        Run the writer.

        On success the declared keys are invalidated and ``on_success`` runs;
        on failure nothing is invalidated and ``on_error`` runs. Always
        returns the resulting state.
        """
        self._state = MutationState(status=MutationStatus.PENDING)
        logger.debug(f"Mutation {self.name} pending")

        try:
            if self._validate is not None:
                self._validate(*args, **kwargs)
            data = await self._write(args, kwargs)
        except asyncio.CancelledError:
            self._state = MutationState()
            raise
        except Exception as e:
            self._state = MutationState(status=MutationStatus.ERROR, error=e)
            logger.warning(f"Mutation {self.name} failed: {e}")
            await self._call_hook(self._on_error, e, *args, **kwargs)
            await self._call_hook(self._on_settled, None, e, *args, **kwargs)
            return self._state

        keys = self._keys_for(data, args, kwargs)
        invalidation = None
        if keys:
            invalidation = self._client.apply(
                InvalidationRequest.for_keys(keys, source=f"mutation:{self.name}")
            )

        self._state = MutationState(
            status=MutationStatus.SUCCESS,
            data=data,
            invalidation=invalidation,
        )
        logger.debug(f"Mutation {self.name} succeeded")
        await self._call_hook(self._on_success, data, *args, **kwargs)
        await self._call_hook(self._on_settled, data, None, *args, **kwargs)
        return self._state

    async def mutate_or_raise(self, *args, **kwargs) -> Any:
        """Like mutate(), but return the data or raise the writer's error."""
        state = await self.mutate(*args, **kwargs)
        if state.is_error:
            raise state.error
        return state.data
