"""asyncio 보조 함수"""

import asyncio
from typing import Any, Awaitable, Callable, Coroutine, Optional

from utils.exceptions import LedgerTimeoutError


async def run_with_timeout(awaitable: Awaitable[Any], timeout: float, name: str = "ledger") -> Any:
    """제한 시간 안에 끝나지 않으면 LedgerTimeoutError를 발생시킵니다."""
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as e:
        raise LedgerTimeoutError(f"네트워크 응답 시간 초과 ({name}, {timeout:g}초). 다시 시도해주세요.") from e


def create_safe_task(coro: Coroutine[Any, Any, Any], name: Optional[str] = None,
                     on_error: Optional[Callable[[BaseException], None]] = None) -> asyncio.Task:
    """예외가 조용히 사라지지 않도록 완료 콜백을 붙여 태스크를 만듭니다."""
    task = asyncio.ensure_future(coro)

    def _handle_exception(t: asyncio.Task):
        if t.cancelled():
            return
        exc = t.exception()
        if exc is None:
            return
        if on_error is not None:
            on_error(exc)
        else:
            print(f"[AsyncTask:{name or 'task'}] 처리되지 않은 예외: {exc!r}")

    task.add_done_callback(_handle_exception)
    return task
