"""安装服务 — 面向安装/卸载协作方的入口

  download_ruleset(name, spec, dest_dir, patterns)  单个规则集
  list_versions(name) / resolve_version(name, spec)
  install_many(deps, target_dir, ...)               批量并发安装并汇总
  outdated(deps)                                    检查可更新项

依赖名可带 registry 前缀（registry@ruleset），否则使用默认来源。
批量安装写入 <target_dir>/<registry>/<ruleset>/。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from airules.core.exceptions import AIRulesError
from airules.core.models import BatchSummary, ContentSelector, DownloadJob, DownloadResult, LockEntry
from airules.core.semver import LATEST
from airules.registry.factory import RegistryManager
from airules.services.downloader import ConcurrentDownloader, ProgressCallback
from airules.utils.net import CancelToken

logger = logging.getLogger(__name__)


def parse_dependency(text: str) -> tuple[str, str]:
    """'name=spec' -> (name, spec)，未给出版本时为 latest"""
    name, _, spec = text.partition("=")
    return name.strip(), spec.strip() or LATEST


@dataclass
class OutdatedItem:
    name: str
    spec: str
    wanted: str = ""
    latest: str = ""
    error: str = ""

    @property
    def outdated(self) -> bool:
        return not self.error and self.wanted != self.latest


class Installer:

    def __init__(
        self,
        manager: RegistryManager,
        downloader: ConcurrentDownloader | None = None,
    ) -> None:
        self.manager = manager
        self.downloader = downloader or ConcurrentDownloader(manager)

    def download_ruleset(
        self,
        name: str,
        spec: str,
        dest_dir: str | Path,
        patterns: list[str] | None = None,
        excludes: list[str] | None = None,
        cancel: CancelToken | None = None,
    ) -> LockEntry:
        registry_name, ruleset = self.manager.split_name(name)
        return self.manager.get(registry_name).download_ruleset(
            ruleset, spec, dest_dir, ContentSelector.of(patterns, excludes), cancel,
        )

    def list_versions(self, name: str) -> list[str]:
        registry_name, ruleset = self.manager.split_name(name)
        return self.manager.get(registry_name).list_versions(ruleset)

    def resolve_version(self, name: str, spec: str) -> str:
        registry_name, ruleset = self.manager.split_name(name)
        return self.manager.get(registry_name).resolve_version(ruleset, spec)

    def install_many(
        self,
        deps: dict[str, str],
        target_dir: str | Path,
        patterns: list[str] | None = None,
        excludes: list[str] | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> BatchSummary:
        """并发安装全部依赖，逐项汇总；是否视为失败由调用方通过 raise_for_failure 决定"""
        selector = ContentSelector.of(patterns, excludes)
        jobs: list[DownloadJob] = []
        rejected: list[DownloadResult] = []
        for name, spec in deps.items():
            try:
                registry_name, ruleset = self.manager.split_name(name)
            except AIRulesError as e:
                job = DownloadJob(ruleset=name, version_spec=spec, registry_name="?", dest_dir="")
                rejected.append(DownloadResult(job=job, error=e))
                continue
            jobs.append(DownloadJob(
                ruleset=ruleset,
                version_spec=spec,
                registry_name=registry_name,
                dest_dir=str(Path(target_dir) / registry_name / ruleset),
                selector=selector,
                cancel=CancelToken(),
            ))

        results = rejected + self.downloader.download_all(jobs, on_progress)
        summary = BatchSummary(results=results)
        if summary.failed:
            logger.warning(
                "安装汇总: %s (%s)", summary.describe(), ", ".join(summary.failures()),
            )
        else:
            logger.info("安装汇总: %s", summary.describe())
        return summary

    def outdated(self, deps: dict[str, str]) -> list[OutdatedItem]:
        """对比当前约束解析结果与 latest；单项失败只记录在该项上"""
        items: list[OutdatedItem] = []
        for name, spec in deps.items():
            item = OutdatedItem(name=name, spec=spec)
            try:
                item.wanted = self.resolve_version(name, spec)
                item.latest = self.resolve_version(name, LATEST)
            except AIRulesError as e:
                item.error = str(e)
            items.append(item)
        return items
