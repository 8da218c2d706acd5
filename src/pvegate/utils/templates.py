"""Template rendering utilities."""

import logging
from typing import Any
from jinja2 import Environment, StrictUndefined, TemplateError


logger = logging.getLogger(__name__)

_environment = Environment(
    undefined=StrictUndefined,
    keep_trailing_newline=True,
    autoescape=False,
)


def render_template(template_str: str, **context: Any) -> str:
    """Render a Jinja2 template string with given context.

    Undefined variables are errors, so a missing value never renders as an
    empty string into a config file.
    """
    try:
        return _environment.from_string(template_str).render(**context)
    except TemplateError as e:
        logger.error(f"Template rendering error: {e}")
        raise
