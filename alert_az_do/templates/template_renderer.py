"""
模板渲染模块

配置中的 summary / description / project / fields 等均为 Jinja2 模板字符串，
渲染上下文为 Data.template_context()（字段名与 Alertmanager webhook JSON 一致）。

配置了 template 文件时，文件中定义的宏以 tpl 命名空间导入，例如：
    summary: '{{ tpl.summary() }}'
"""
import json
import os
import re
from pathlib import Path
from threading import RLock
from typing import Any, Dict, Optional

from jinja2 import Environment, FileSystemLoader, Template, TemplateError

from ..core.errors import RenderError
from ..core.logging_config import get_logger
from ..core.models import Data

logger = get_logger()

# Go 风格替换引用 $1 / ${name}，转为 Python 的 \g<1> / \g<name>
_GO_GROUP_REF = re.compile(r"\$\{?(\w+)\}?")

# 正则缓存，避免重复编译
_REGEX_CACHE: Dict[str, re.Pattern] = {}


def _regex(pattern: str) -> re.Pattern:
    compiled = _REGEX_CACHE.get(pattern)
    if compiled is None:
        compiled = re.compile(pattern)
        _REGEX_CACHE[pattern] = compiled
    return compiled


def _join(sep: Any, items: Any = None) -> str:
    # 同时支持 {{ join(",", items) }} 与 {{ items | join(",") }}（后者为 Jinja2 内置 join）
    if items is None:
        return ""
    return str(sep).join(str(i) for i in items)


def _match(pattern: str, text: Any) -> bool:
    return _regex(pattern).search(str(text)) is not None


def _re_replace_all(pattern: str, repl: str, text: Any) -> str:
    return _regex(pattern).sub(_GO_GROUP_REF.sub(r"\\g<\1>", repl), str(text))


def _string_slice(*items: Any) -> list:
    return [str(i) for i in items]


def _get_env(name: str) -> str:
    return os.environ.get(name, "")


def _to_json(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, default=str)


def _to_json_pretty(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, default=str, indent=2)


def _contains(sub: Any, text: Any) -> bool:
    return str(sub) in str(text)


def _has_prefix(prefix: Any, text: Any) -> bool:
    return str(text).startswith(str(prefix))


def _has_suffix(suffix: Any, text: Any) -> bool:
    return str(text).endswith(str(suffix))


_FILTERS = {
    "toUpper": lambda s: str(s).upper(),
    "toLower": lambda s: str(s).lower(),
    "toJson": _to_json,
    "toJsonPretty": _to_json_pretty,
}

_GLOBALS = {
    "join": _join,
    "match": _match,
    "reReplaceAll": _re_replace_all,
    "stringSlice": _string_slice,
    "getEnv": _get_env,
    "toJson": _to_json,
    "toJsonPretty": _to_json_pretty,
    "contains": _contains,
    "hasPrefix": _has_prefix,
    "hasSuffix": _has_suffix,
    "toUpper": lambda s: str(s).upper(),
    "toLower": lambda s: str(s).lower(),
    "title": lambda s: str(s).title(),
}


class TemplateRenderer:
    """
    Jinja2 渲染器

    render(template, data) -> str，失败抛出 RenderError。
    纯函数式，不修改上下文，可并发调用。
    """

    def __init__(self, template_file: Optional[str] = None):
        """
        初始化渲染器

        Args:
            template_file: 宏模板文件路径（可选）

        Raises:
            RenderError: 模板文件不存在或语法错误
        """
        self.template_file = template_file
        self._template_name: Optional[str] = None
        loader = None
        if template_file:
            path = Path(template_file)
            loader = FileSystemLoader(str(path.parent))
            self._template_name = path.name

        self.env = Environment(
            loader=loader,
            keep_trailing_newline=False,
            autoescape=False,
        )
        self.env.filters.update(_FILTERS)
        self.env.globals.update(_GLOBALS)

        self._cache: Dict[str, Template] = {}
        self._lock = RLock()

        if self._template_name:
            try:
                # 提前加载一次，尽早暴露语法错误
                self.env.get_template(self._template_name)
            except TemplateError as e:
                raise RenderError("template file", f"{template_file}: {e}") from e
            logger.info(f"模板文件已加载: {template_file}")

    def _compile(self, source: str) -> Template:
        with self._lock:
            compiled = self._cache.get(source)
            if compiled is None:
                full_source = source
                if self._template_name:
                    full_source = f'{{% import "{self._template_name}" as tpl with context %}}' + source
                compiled = self.env.from_string(full_source)
                self._cache[source] = compiled
            return compiled

    def render(self, template: str, data: Any = None, field: str = "template") -> str:
        """
        渲染模板字符串

        Args:
            template: 模板源码
            data: Data 对象或普通字典
            field: 出错时报告的字段名

        Returns:
            str: 渲染结果

        Raises:
            RenderError: 语法错误或运行时错误（如访问未定义变量的属性）
        """
        if not template:
            return ""
        if isinstance(data, Data):
            ctx = data.template_context()
        elif isinstance(data, dict):
            ctx = data
        else:
            ctx = {}
        try:
            return self._compile(template).render(**ctx)
        except TemplateError as e:
            raise RenderError(field, str(e)) from e
        except (TypeError, ValueError, AttributeError, KeyError, re.error) as e:
            raise RenderError(field, f"{type(e).__name__}: {e}") from e


_default_renderer: Optional[TemplateRenderer] = None


def render(template: str, data: Any = None, field: str = "template") -> str:
    """使用不带宏文件的默认渲染器渲染（便捷函数）"""
    global _default_renderer
    if _default_renderer is None:
        _default_renderer = TemplateRenderer()
    return _default_renderer.render(template, data, field=field)
