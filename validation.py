from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from typing import Callable, Sequence


def run_checks(checks: Sequence[Callable[[], None]], max_workers: int = 4) -> None:
    """Run independent checks in parallel and re-raise the first failure.

    Checks that have not started when a failure surfaces are cancelled.
    """
    if not checks:
        return
    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(checks)))) as pool:
        futures = [pool.submit(check) for check in checks]
        done, pending = wait(futures, return_when=FIRST_EXCEPTION)
        for future in pending:
            future.cancel()
        failed = [future for future in done if future.exception() is not None]
        if failed:
            # submission order decides between checks that failed together
            first = min(failed, key=futures.index)
            raise first.exception()


def run_checks_inline(checks: Sequence[Callable[[], None]]) -> None:
    for check in checks:
        check()
