"""Rendering of ``*.tmpl`` ConfigMap entries into VCL files."""

from typing import Any

from jinja2 import Environment, StrictUndefined, TemplateError

from constants import TEMPLATE_SUFFIX
from models import PodInfo, ValidationError

_environment = Environment(
    undefined=StrictUndefined,
    trim_blocks=True,
    lstrip_blocks=True,
    keep_trailing_newline=True,
    autoescape=False,
)


def split_files(data: dict[str, str] | None) -> tuple[dict[str, str], dict[str, str]]:
    """Separate static files from templates (keys ending in ``.tmpl``)."""
    files: dict[str, str] = {}
    templates: dict[str, str] = {}
    for name, contents in (data or {}).items():
        if name.endswith(TEMPLATE_SUFFIX):
            templates[name] = contents
        else:
            files[name] = contents
    return files, templates


def verify_entrypoint(
    files: dict[str, str], templates: dict[str, str], entrypoint: str
) -> None:
    if entrypoint not in files and entrypoint + TEMPLATE_SUFFIX not in templates:
        raise ValidationError(f"{entrypoint} must exist in configmap, but not found")


def template_context(
    backends: list[PodInfo],
    target_port: int,
    varnish_nodes: list[PodInfo],
    varnish_port: int,
) -> dict[str, Any]:
    """Variables available to every template."""
    return {
        "backends": [backend.to_template_dict() for backend in backends],
        "target_port": target_port,
        "varnish_nodes": [node.to_template_dict() for node in varnish_nodes],
        "varnish_port": varnish_port,
    }


def render_templates(
    templates: dict[str, str], context: dict[str, Any]
) -> dict[str, str]:
    """Render each template to the file name without its ``.tmpl`` suffix."""
    rendered: dict[str, str] = {}
    for name in sorted(templates):
        target = name[: -len(TEMPLATE_SUFFIX)]
        try:
            rendered[target] = _environment.from_string(templates[name]).render(context)
        except TemplateError as e:
            raise ValidationError(f"Cannot render template {name}: {e}") from e
    return rendered


def merge_rendered(files: dict[str, str], rendered: dict[str, str]) -> dict[str, str]:
    """Combine static and rendered files. A name present in both is an error."""
    merged = dict(files)
    for name, contents in rendered.items():
        if name in merged:
            raise ValidationError(
                f"ConfigMap has {name} and {name}{TEMPLATE_SUFFIX} entries. "
                "Cannot include file and template with same name"
            )
        merged[name] = contents
    return merged
