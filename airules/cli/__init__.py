"""airules 命令行接口

CLI 按领域拆分为子模块，每个模块注册自己的命令到 main group。
"""

from __future__ import annotations

import os
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import click

from airules import __version__
from airules.core.exceptions import AIRulesError
from airules.services.container import get_container, reset_container
from airules.utils.logger import setup_logging


def _svc() -> Any:
    """获取全局服务容器的快捷方式"""
    return get_container()


def _parse_deps(items: tuple[str, ...]) -> dict[str, str]:
    """解析 name=spec 参数列表，未给出版本时为 latest"""
    from airules.services.installer import parse_dependency
    deps: dict[str, str] = {}
    for item in items:
        name, spec = parse_dependency(item)
        if not name:
            raise click.BadParameter(f"无效的依赖: '{item}'")
        deps[name] = spec
    return deps


@contextmanager
def friendly_errors() -> Iterator[None]:
    """把领域异常转换为 click 的错误输出（退出码 1）"""
    try:
        yield
    except AIRulesError as e:
        raise click.ClickException(str(e)) from e


@click.group()
@click.version_option(version=__version__)
@click.option("--config", "-c", "config_path", default=None,
              help="配置文件路径（默认 $AIRULES_CONFIG 或 .airules.yml）")
@click.pass_context
def main(ctx: click.Context, config_path: str | None) -> None:
    """airules - AI 编码助手规则集包管理"""
    setup_logging(
        level=os.getenv("AIRULES_LOG_LEVEL", "INFO"),
        json_output=os.getenv("AIRULES_LOG_JSON", "") == "1",
    )
    from airules.core.config import init_config
    with friendly_errors():
        init_config(config_path)
    reset_container()
    # 命令结束后等待后台缓存写入
    ctx.call_on_close(reset_container)


# 注册各领域子命令
from airules.cli.cmd_install import register as _reg_install  # noqa: E402
from airules.cli.cmd_cache import register as _reg_cache  # noqa: E402

_reg_install(main)
_reg_cache(main)
