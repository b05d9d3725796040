"""Shared utilities."""
from .templates import TemplateKind, PLACEHOLDERS, render_template, template_placeholders

__all__ = ["TemplateKind", "PLACEHOLDERS", "render_template", "template_placeholders"]
