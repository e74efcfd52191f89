"""CLI — 缓存查看命令"""

from __future__ import annotations

import time

import click

from airules.cli import _svc


def register(group: click.Group) -> None:
    group.add_command(cache_group)


@click.group(name="cache")
def cache_group() -> None:
    """本地内容缓存管理"""


@cache_group.command(name="info")
@click.option("--verbose", "-v", is_flag=True, help="列出每个缓存条目")
def cache_info(verbose: bool) -> None:
    """显示缓存目录与统计"""
    cache = _svc().cache
    st = cache.stats()
    click.echo(f"缓存目录: {st['root']}")
    click.echo(f"  registry: {st['registries']}  条目: {st['entries']}"
               f"  文件: {st['files']}  大小: {st['bytes']} 字节")
    if not verbose:
        return
    for e in cache.list_entries():
        accessed = time.strftime("%Y-%m-%d %H:%M", time.localtime(e.last_accessed)) \
            if e.last_accessed else "-"
        click.echo(f"  [{e.registry_type}] {e.ruleset}@{e.version}"
                   f"  {e.file_count} 个文件  访问 {e.access_count} 次  最近 {accessed}")
