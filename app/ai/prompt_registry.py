"""
Certification Workflow Service
Prompt Registry.

YAML-based prompt template management with:
    - Built-in default templates
    - Optional overrides loaded from PROMPTS_DIR/*.yaml
    - {{variable}} rendering into chat messages
    - Version tracking

Usage:
    from app.ai.prompt_registry import PromptRegistry
    registry = PromptRegistry()
    messages = registry.render("question_generator", requirement="Quarterly access review")
"""

import logging
import re
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)


class PromptTemplate:
    """A single prompt template with metadata."""

    def __init__(self, name: str, version: str, system: str, user: str,
                 description: str = "", metadata: dict | None = None):
        self.name = name
        self.version = version
        self.system = system
        self.user = user
        self.description = description
        self.metadata = metadata or {}

    def render(self, **variables) -> list[dict]:
        """
        Render template with variables, returning chat messages.

        Variables are replaced using {{variable_name}} syntax; unknown
        placeholders are left as-is.
        """
        system_rendered = self._substitute(self.system, variables)
        user_rendered = self._substitute(self.user, variables)

        messages = []
        if system_rendered.strip():
            messages.append({"role": "system", "content": system_rendered})
        if user_rendered.strip():
            messages.append({"role": "user", "content": user_rendered})
        return messages

    @staticmethod
    def _substitute(template: str, variables: dict) -> str:
        def replacer(match):
            key = match.group(1).strip()
            return str(variables.get(key, f"{{{{{key}}}}}"))
        return re.sub(r'\{\{(\s*\w+\s*)\}\}', replacer, template)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "version": self.version,
            "description": self.description,
            "system_preview": self.system[:200],
            "user_preview": self.user[:200],
        }


class PromptRegistry:
    """
    Registry for loading and managing prompt templates.

    Built-in defaults are registered first; YAML files in ``prompts_dir``
    with the same name and version replace them.
    """

    def __init__(self, prompts_dir: str | None = None):
        self._prompts_dir = prompts_dir
        self._templates: dict[str, dict[str, PromptTemplate]] = {}  # name → {version → template}
        for tpl in _DEFAULT_TEMPLATES:
            self._register(tpl)
        if prompts_dir:
            self._load_from_dir()

    def _load_from_dir(self):
        prompts_path = Path(self._prompts_dir)
        if not prompts_path.exists():
            logger.info("Prompts directory not found: %s. Using defaults only.", self._prompts_dir)
            return

        for yaml_file in sorted(prompts_path.glob("*.yaml")):
            try:
                with open(yaml_file, "r", encoding="utf-8") as f:
                    data = yaml.safe_load(f)
            except (OSError, yaml.YAMLError) as e:
                logger.error("Failed to load prompt %s: %s", yaml_file.name, e)
                continue
            if not data or not isinstance(data, dict):
                continue

            tpl = PromptTemplate(
                name=data.get("name", yaml_file.stem),
                version=str(data.get("version", "v1")),
                system=data.get("system", ""),
                user=data.get("user", ""),
                description=data.get("description", ""),
                metadata=data.get("metadata", {}),
            )
            self._register(tpl)
            logger.info("Loaded prompt template: %s (%s) from %s",
                        tpl.name, tpl.version, yaml_file.name)

    def _register(self, template: PromptTemplate):
        self._templates.setdefault(template.name, {})[template.version] = template

    def get(self, name: str, version: str = "v1") -> PromptTemplate | None:
        return self._templates.get(name, {}).get(version)

    def render(self, name: str, version: str = "v1", **variables) -> list[dict]:
        """
        Render a prompt template with variables.

        Raises:
            KeyError: If template not found.
        """
        tpl = self.get(name, version)
        if not tpl:
            raise KeyError(f"Prompt template not found: {name} {version}")
        return tpl.render(**variables)

    def list_templates(self) -> list[dict]:
        return [tpl.to_dict() for versions in self._templates.values() for tpl in versions.values()]


# ── Built-in Default Templates ────────────────────────────────────────────────

_DEFAULT_TEMPLATES = [
    PromptTemplate(
        name="question_generator",
        version="v1",
        description="Draft certification questions from a compliance requirement",
        system=(
            "You are a certification expert. You write short, unambiguous questions "
            "that attesters answer to confirm a compliance requirement is met."
        ),
        user=(
            "Based on this requirement, generate 3-5 certification questions that "
            "attesters should answer.\n\n"
            "Requirement: {{requirement}}\n\n"
            "Return ONLY a valid JSON array with this exact structure "
            "(no markdown, no additional text):\n"
            "[{\n"
            '  "question": "question text",\n'
            '  "type": "yes_no" | "dropdown" | "multiple_choice" | "text" | "date",\n'
            '  "options": ["option1", "option2"],\n'
            '  "allow_comments": true,\n'
            '  "required": true\n'
            "}]\n\n"
            "Rules:\n"
            '1. type must be exactly one of: "yes_no", "dropdown", "multiple_choice", "text", "date"\n'
            '2. options is ONLY included for "dropdown" or "multiple_choice" types (minimum 2 options)\n'
            '3. allow_comments is ONLY included for "yes_no" type\n'
            "4. required should be true for critical questions\n"
            "5. Generate {{max_questions}} questions maximum\n"
            "6. Make questions clear, specific, and relevant\n\n"
            "Return ONLY the JSON array, nothing else."
        ),
    ),
]
