"""
模板渲染
"""
from .template_renderer import TemplateRenderer, render

__all__ = ["TemplateRenderer", "render"]
