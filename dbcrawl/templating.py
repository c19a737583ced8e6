"""`${name}` template expansion for connection URLs and configuration values."""

import re
from typing import Optional, Dict, Mapping, Set

TEMPLATE_VARIABLE = re.compile(r"\$\{([^${}]+)\}")
# Any leftover placeholder, including `${}` and names that cannot be expanded
UNRESOLVED_VARIABLE = re.compile(r"\$\{([^}]*)\}")


def expand_template(template: Optional[str], variables: Mapping[str, str]) -> Optional[str]:
    """Expand `${name}` placeholders in a single string.

    Values that themselves hold placeholders are expanded as well. Unknown
    names, and names that refer back to themselves, are left verbatim.

    Args:
        template: String to expand (None is returned unchanged)
        variables: Variable pool

    Returns:
        The expanded string
    """
    if not template:
        return template
    return _expand(template, variables, frozenset())


def _expand(template: str, variables: Mapping[str, str], seen: frozenset) -> str:
    def replace(match: "re.Match[str]") -> str:
        name = match.group(1)
        value = variables.get(name)
        if value is None or name in seen:
            return match.group(0)
        return _expand(str(value), variables, seen | {name})

    return TEMPLATE_VARIABLE.sub(replace, template)


def substitute_variables(
    template_map: Mapping[str, Optional[str]],
    variables: Optional[Mapping[str, str]] = None,
) -> Dict[str, Optional[str]]:
    """Expand every value of a map, using the map itself as the variable pool.

    Args:
        template_map: Map whose values may contain `${name}` placeholders
        variables: Extra variables; entries of the map take precedence

    Returns:
        A new map with expanded values
    """
    pool: Dict[str, str] = dict(variables or {})
    pool.update({k: v for k, v in template_map.items() if v is not None})
    return {key: expand_template(value, pool) for key, value in template_map.items()}


def extract_template_variables(text: Optional[str]) -> Set[str]:
    """Return the names of all `${name}` placeholders left in a string.

    An empty placeholder `${}` is reported as the empty name.
    """
    if not text:
        return set()
    return set(UNRESOLVED_VARIABLE.findall(text))
