"""
${VAR} placeholder substitution for config text.
"""

import logging
import os
import re
from collections.abc import Mapping

logger = logging.getLogger("frontdoor.router.env")

PLACEHOLDER_RE = re.compile(r"\$\{([^}]+)\}")


def substitute_env_variables(content: str, environ: Mapping[str, str] | None = None) -> str:
    """
    Replace ${VAR_NAME} with the value of VAR_NAME.

    Unset variables keep their placeholder text and a warning is logged
    for each one, so the failure surfaces when the rule is applied.

    Args:
        content: raw text to process
        environ: variables to resolve against (os.environ by default)

    Returns:
        The substituted text
    """
    env = os.environ if environ is None else environ

    def _replace(match: re.Match) -> str:
        name = match.group(1)
        value = env.get(name)
        if value is None:
            logger.warning("Environment variable %s is not defined, keeping placeholder", name)
            return match.group(0)
        return value

    return PLACEHOLDER_RE.sub(_replace, content)


def find_placeholders(value: str) -> list[str]:
    """Return the variable names of any ${...} placeholders left in value."""
    return PLACEHOLDER_RE.findall(value or "")
