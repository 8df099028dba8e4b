import asyncio

from exceptions import OperationCancelled


class CancellationToken:
    """Cooperative cancellation signal passed down every LLM call chain."""

    def __init__(self):
        self._event = asyncio.Event()
        self.reason = ""

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled by caller") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled(self.reason)

    async def wait(self) -> None:
        await self._event.wait()


async def run_cancellable(coro, cancel_token: CancellationToken | None):
    """Await `coro`, aborting with OperationCancelled as soon as the token fires."""
    if cancel_token is None:
        return await coro
    cancel_token.raise_if_cancelled()

    work = asyncio.ensure_future(coro)
    waiter = asyncio.ensure_future(cancel_token.wait())
    try:
        done, _ = await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        work.cancel()
        raise
    finally:
        waiter.cancel()

    if work in done:
        return work.result()

    work.cancel()
    try:
        await work
    except asyncio.CancelledError:
        pass
    raise OperationCancelled(cancel_token.reason)
