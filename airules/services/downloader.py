"""并发下载器 — 按 registry 分组、每组独立限流的线程池

每个 registry 一个 ThreadPoolExecutor，max_workers 取该 registry 的并发度
（来源覆盖 > 类型默认 > 全局默认 > 按类型兜底）；各 registry 的池同时运行，没有全局上限。
单个任务失败只记录在它自己的结果上，不影响其他任务；结果按完成顺序返回。
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from typing import TYPE_CHECKING

from airules.core.exceptions import AIRulesError
from airules.core.models import DownloadJob, DownloadResult

if TYPE_CHECKING:
    from airules.registry.factory import RegistryManager

logger = logging.getLogger(__name__)

# 进度回调: (刚完成的结果, 已完成数, 总数)
ProgressCallback = Callable[[DownloadResult, int, int], None]


class ConcurrentDownloader:

    def __init__(self, manager: RegistryManager) -> None:
        self.manager = manager

    def download_all(
        self,
        jobs: list[DownloadJob],
        on_progress: ProgressCallback | None = None,
    ) -> list[DownloadResult]:
        """执行全部任务，返回无序结果（每个任务恰好一个）"""
        groups: dict[str, list[DownloadJob]] = {}
        for job in jobs:
            groups.setdefault(job.registry_name, []).append(job)

        total = len(jobs)
        results: list[DownloadResult] = []
        pools: list[ThreadPoolExecutor] = []
        futures: list[Future[DownloadResult]] = []

        def record(result: DownloadResult) -> None:
            results.append(result)
            status = "成功" if result.ok else f"失败: {result.error}"
            logger.info("[%d/%d] %s %s", len(results), total, result.job.label, status)
            if on_progress is not None:
                on_progress(result, len(results), total)

        try:
            for registry_name, group in groups.items():
                try:
                    limit = self.manager.concurrency_for(registry_name)
                except AIRulesError as e:
                    # registry 配置错误只影响该组任务
                    for job in group:
                        record(DownloadResult(job=job, error=e))
                    continue
                logger.debug("registry %s: %d 个任务, 并发 %d", registry_name, len(group), limit)
                pool = ThreadPoolExecutor(
                    max_workers=limit, thread_name_prefix=f"dl-{registry_name}",
                )
                pools.append(pool)
                futures.extend(pool.submit(self._run_one, job) for job in group)

            for future in as_completed(futures):
                record(future.result())
        finally:
            for pool in pools:
                pool.shutdown(wait=True)
        return results

    def _run_one(self, job: DownloadJob) -> DownloadResult:
        start = time.monotonic()
        try:
            registry = self.manager.get(job.registry_name)
            entry = registry.download_ruleset(
                job.ruleset, job.version_spec, job.dest_dir, job.selector, job.cancel,
            )
        except (AIRulesError, OSError, ValueError) as e:
            logger.debug("任务失败: %s", job.label, exc_info=True)
            return DownloadResult(job=job, error=e, duration=time.monotonic() - start)
        except Exception as e:  # noqa: BLE001
            # 后端实现缺陷同样只记在本任务上，不中断同批其他任务
            logger.error("任务异常: %s", job.label, exc_info=True)
            return DownloadResult(job=job, error=e, duration=time.monotonic() - start)
        return DownloadResult(job=job, entry=entry, duration=time.monotonic() - start)
