from __future__ import annotations

from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, select_autoescape
from weasyprint import CSS, HTML


TEMPLATES_DIR = Path(__file__).resolve().parents[1] / "templates"


def _jinja_env(templates_dir: Path) -> Environment:
    return Environment(
        loader=FileSystemLoader(str(templates_dir)),
        autoescape=select_autoescape(["html", "xml"]),
    )


def render_html(*, template_name: str, context: dict[str, Any], templates_dir: Path = TEMPLATES_DIR) -> str:
    return _jinja_env(templates_dir).get_template(template_name).render(**context)


def render_pdf(
    *,
    template_name: str,
    context: dict[str, Any],
    output_path: Path,
    templates_dir: Path = TEMPLATES_DIR,
    css_names: tuple[str, ...] = ("base.css",),
) -> Path:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    html_text = render_html(template_name=template_name, context=context, templates_dir=templates_dir)

    css = [CSS(filename=str(templates_dir / name)) for name in css_names]
    HTML(string=html_text, base_url=str(templates_dir)).write_pdf(target=str(output_path), stylesheets=css)
    return output_path
