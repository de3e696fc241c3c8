"""Command templates rendered with jinja2."""
import shlex
from typing import Any, Mapping

from jinja2 import BaseLoader, Environment, StrictUndefined, TemplateError, TemplateSyntaxError

from .command import DEFAULT_TIMEOUT_SECONDS, CommandSpec
from .errors import ConfigError

_env = Environment(loader=BaseLoader(), undefined=StrictUndefined, autoescape=False, keep_trailing_newline=False)


class TemplateExpander:
    """
    Compiled command template.

    Parameter values are substituted verbatim: quoting is up to the template author.
    """

    def __init__(self, template_text: str, name: str = "command"):
        if not template_text or not template_text.strip():
            raise ConfigError(f"Command template '{name}' is empty")
        self.name = name
        self.source = template_text
        try:
            self._template = _env.from_string(template_text)
        except TemplateSyntaxError as e:
            raise ConfigError(f"Malformed command template '{name}' (line {e.lineno}): {e.message}") from e

    def expand(self, params: Mapping[str, Any]) -> str:
        """
        Render the template into a single command line.

        Raises:
            ConfigError: If the template references a parameter that was not supplied
        """
        try:
            return self._template.render(**params).strip()
        except TemplateError as e:
            raise ConfigError(f"Command template '{self.name}' failed to render: {e}") from e


def to_command_spec(line: str, timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
                    split_arguments: bool = False) -> CommandSpec:
    """
    Turn an expanded command line into a CommandSpec.

    By default the whole line is the executable name, with no arguments. With
    split_arguments the line is tokenized with shell quoting rules, but no shell runs it.
    """
    if not split_arguments:
        return CommandSpec.of(line, timeout_seconds=timeout_seconds)
    try:
        tokens = shlex.split(line)
    except ValueError as e:
        raise ConfigError(f"Cannot split command line: {e}") from e
    if not tokens:
        raise ConfigError("Command line is empty after expansion")
    return CommandSpec.of(tokens[0], tokens[1:], timeout_seconds)
