"""
Utilities for substituting environment variables into recipe files.
"""
import re
from typing import Dict

# ${VAR}, ${VAR:-default}, ${VAR:+alt}, or $$ for a literal dollar sign
_PATTERN = re.compile(r'\$\$|\$\{([A-Za-z_][A-Za-z0-9_]*)(?::([-+])([^}]*))?\}')


class EnvironmentInterpolator:
    """
    Interpolates ${VAR}-style placeholders.
    """
    @staticmethod
    def interpolate(template: str, context: Dict[str, str]) -> str:
        """
        Substitutes every placeholder in the template.

        :param template: Text containing placeholders.
        :param context: Variable values.
        :return: The substituted text.
        :raises KeyError: A bare ${VAR} names a variable missing from the context.
        """
        def replace(match):
            if match.group(0) == "$$":
                return "$"
            name, modifier, alt_value = match.group(1), match.group(2), match.group(3)
            value = context.get(name)

            if modifier == '-':
                return value if value else alt_value
            if modifier == '+':
                return alt_value if value else ''
            if value is None:
                raise KeyError(name)
            return value

        return _PATTERN.sub(replace, template)
