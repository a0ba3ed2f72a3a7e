"""Template rendering utilities."""

import logging
from typing import Any
from jinja2 import Environment, BaseLoader, StrictUndefined, TemplateError


logger = logging.getLogger(__name__)


class StringTemplateLoader(BaseLoader):
    """Template loader for string templates."""

    def __init__(self, template_string: str):
        self.template_string = template_string

    def get_source(self, environment, template):
        return self.template_string, None, lambda: True


def _environment(template_str: str) -> Environment:
    return Environment(
        loader=StringTemplateLoader(template_str),
        undefined=StrictUndefined,
        keep_trailing_newline=True,
    )


def render_template(template_str: str, **context: Any) -> str:
    """Render a Jinja2 template string with given context."""
    try:
        template = _environment(template_str).get_template("")
        return template.render(**context)

    except TemplateError as e:
        logger.error(f"Template rendering error: {e}")
        raise


def check_template(template_str: str) -> None:
    """Parse a template string, raising TemplateSyntaxError if it is malformed."""
    env = _environment(template_str)
    env.parse(template_str)
