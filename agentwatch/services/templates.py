#  Agent Watch - Template Renderer
#
#  Jinja2 SandboxedEnvironment rendering for alert and report templates.
#  Variables are always passed as a context mapping, never spliced into
#  template source. HTML output is autoescaped. Missing variables render
#  as "N/A"; now/date/time are always available.
#
#  Depends on: exceptions.py
#  Used by:    services/alerting.py, services/reports.py

import time
from collections.abc import Mapping
from datetime import datetime, timezone

from jinja2 import ChainableUndefined, TemplateError
from jinja2.sandbox import SandboxedEnvironment

from agentwatch.exceptions import ValidationError

MISSING_VALUE = "N/A"


class _MissingValue(ChainableUndefined):
    """Undefined that chains through attribute access and prints N/A."""

    def __str__(self) -> str:
        return MISSING_VALUE

    def __html__(self) -> str:
        return MISSING_VALUE


class TemplateRenderer:
    """Compiles and renders templates in a sandbox."""

    def __init__(self, clock=time.time):
        self._clock = clock
        self._text_env = SandboxedEnvironment(autoescape=False, undefined=_MissingValue)
        self._html_env = SandboxedEnvironment(autoescape=True, undefined=_MissingValue)

    def builtins(self) -> dict:
        now = datetime.fromtimestamp(self._clock(), tz=timezone.utc)
        return {
            "now": now.isoformat(),
            "date": now.strftime("%Y-%m-%d"),
            "time": now.strftime("%H:%M:%S"),
        }

    def validate(self, source: str, html: bool = False):
        """Raise ValidationError if the template does not compile."""
        env = self._html_env if html else self._text_env
        try:
            env.from_string(source)
        except TemplateError as e:
            raise ValidationError(f"Invalid template: {e}") from e

    def render(self, source: str, variables: Mapping | None = None, html: bool = False) -> str:
        env = self._html_env if html else self._text_env
        context = {**(variables or {}), **self.builtins()}
        try:
            return env.from_string(source).render(context)
        except TemplateError as e:
            raise ValidationError(f"Template rendering failed: {e}") from e
