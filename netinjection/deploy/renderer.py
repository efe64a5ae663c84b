"""ARM template rendering."""
import json
from pathlib import Path
from typing import Any, Dict, Optional

from jinja2 import Environment, FileSystemLoader, StrictUndefined, TemplateNotFound, UndefinedError

from .errors import ProvisioningError

NETWORK_API_VERSION = "2023-09-01"
POLICY_API_VERSION = "2020-10-30-preview"


class TemplateLibrary:
    """Renders the ARM templates shipped under `templates/`."""

    def __init__(self, template_dir: Optional[Path] = None, defaults: Optional[Dict[str, Any]] = None):
        """Initialize the library.

        Args:
            template_dir: Directory holding `<ref>.json.j2` files.
            defaults: Render variables shared by every template.
        """
        self.template_dir = Path(template_dir) if template_dir else Path(__file__).parent / "templates"
        self.defaults = {
            "network_api_version": NETWORK_API_VERSION,
            "policy_api_version": POLICY_API_VERSION,
            "tags": {},
        }
        self.defaults.update(defaults or {})

        # StrictUndefined turns a missing variable into an error instead of an empty string
        self.jinja_env = Environment(
            loader=FileSystemLoader(str(self.template_dir)),
            undefined=StrictUndefined,
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self.jinja_env.filters["tojson"] = json.dumps

    def render(self, template_ref: str, **context: Any) -> Dict[str, Any]:
        """Render a template to an ARM template document.

        Args:
            template_ref: Template name without the `.json.j2` suffix.
            **context: Render variables, overriding the defaults.

        Returns:
            Dict[str, Any]: Parsed ARM template.

        Raises:
            ProvisioningError: If the template is unknown, a variable is
                missing, or the result is not valid JSON.
        """
        variables = {**self.defaults, **context}
        try:
            template = self.jinja_env.get_template(f"{template_ref}.json.j2")
            text = template.render(**variables)
        except TemplateNotFound:
            raise ProvisioningError(f"Unknown template '{template_ref}'", str(self.template_dir))
        except UndefinedError as e:
            raise ProvisioningError(f"Template '{template_ref}' is missing a variable", str(e))

        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise ProvisioningError(f"Template '{template_ref}' rendered invalid JSON", str(e))
