"""CLI — 规则集安装与版本查询命令"""

from __future__ import annotations

import click

from airules.cli import _parse_deps, _svc, friendly_errors
from airules.core.models import DownloadResult


def register(group: click.Group) -> None:
    group.add_command(install)
    group.add_command(list_versions)
    group.add_command(resolve)
    group.add_command(outdated)


def _print_progress(result: DownloadResult, done: int, total: int) -> None:
    if result.ok and result.entry is not None:
        click.echo(f"  [{done}/{total}] {result.job.label} -> {result.entry.resolved_version}"
                   f" ({len(result.entry.files)} 个文件)")
    else:
        click.echo(f"  [{done}/{total}] {result.job.label} 失败: {result.error}", err=True)


@click.command()
@click.argument("deps", nargs=-1, required=True)
@click.option("--dest", "-d", default=".airules/rules", help="安装目标目录")
@click.option("--pattern", "-p", multiple=True, help="包含的文件 glob（可多次指定）")
@click.option("--exclude", "-x", multiple=True, help="排除的文件 glob（可多次指定）")
def install(deps: tuple[str, ...], dest: str, pattern: tuple[str, ...], exclude: tuple[str, ...]) -> None:
    """并发安装规则集，参数格式: [registry@]name[=spec]"""
    parsed = _parse_deps(deps)
    with friendly_errors():
        summary = _svc().installer.install_many(
            parsed, dest,
            patterns=list(pattern) or None,
            excludes=list(exclude) or None,
            on_progress=_print_progress,
        )
        click.echo(summary.describe())
        # 部分失败只提示，全部失败才以非零退出
        summary.raise_for_failure()


@click.command(name="versions")
@click.argument("name")
def list_versions(name: str) -> None:
    """列出规则集的可用版本"""
    with friendly_errors():
        versions = _svc().installer.list_versions(name)
    if not versions:
        click.echo(f"没有可用版本: {name}")
        return
    for v in versions:
        click.echo(f"  {v}")


@click.command()
@click.argument("name")
@click.argument("spec", default="latest")
def resolve(name: str, spec: str) -> None:
    """把版本约束解析为具体版本（tag 或 commit）"""
    with friendly_errors():
        click.echo(_svc().installer.resolve_version(name, spec))


@click.command()
@click.argument("deps", nargs=-1, required=True)
def outdated(deps: tuple[str, ...]) -> None:
    """检查依赖是否有更新版本，有可更新项时以非零退出"""
    with friendly_errors():
        items = _svc().installer.outdated(_parse_deps(deps))
    stale = 0
    for item in items:
        if item.error:
            click.echo(f"  {item.name:30s} 错误: {item.error}", err=True)
        elif item.outdated:
            stale += 1
            click.echo(f"  {item.name:30s} {item.spec:12s} {item.wanted} -> {item.latest}")
        else:
            click.echo(f"  {item.name:30s} {item.spec:12s} {item.wanted} (最新)")
    if stale:
        raise SystemExit(1)
