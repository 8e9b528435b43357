"""
Variable substitution for workflow strings.

Supports ${NAME} and $NAME references. Lookup order is the supplied
variables, then the process environment. Unknown references are left
untouched. Substitution is a single pass: replacement text is never
scanned again, so a value cannot pull in further references.
"""

import os
import re
from collections.abc import Mapping

VARIABLE_TOKEN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}|\$([A-Za-z_][A-Za-z0-9_]*)")


def substitute(template, variables: Mapping[str, str] | None, environ: Mapping[str, str] | None = None):
    """
    Replace variable references in a string.

    Args:
        template: String to substitute into (non-strings are returned unchanged)
        variables: Workflow/context variables, checked first
        environ: Environment mapping (default: os.environ)

    Returns:
        The substituted string

    Examples:
        substitute("deploy-${ENV}", {"ENV": "prod"})  -> "deploy-prod"
        substitute("${MISSING}", {})                 -> "${MISSING}"
    """
    if not isinstance(template, str):
        return template

    variables = variables or {}
    env = os.environ if environ is None else environ

    def _replace(match: re.Match) -> str:
        name = match.group(1) or match.group(2)
        if name in variables:
            return str(variables[name])
        if name in env:
            return env[name]
        return match.group(0)

    return VARIABLE_TOKEN.sub(_replace, template)

