"""
Template resolution and rendering

Templates are plain HTML files in TEMPLATES_DIR with {{FIELD}} placeholders.
Field values are always HTML-escaped before substitution.
"""

import html
import logging
import re
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple

from ..config import TEMPLATES_DIR, DEFAULT_TEMPLATE
from ..errors import TemplateNotFound
from .validation import is_valid_template_name

logger = logging.getLogger("sigbatch.templates")

PLACEHOLDER_RE = re.compile(r"\{\{([A-Z][A-Z0-9_]*)\}\}")
_PHONE_CLEAN_RE = re.compile(r"[^0-9+]")


def clean_phone(phone: str) -> str:
    return _PHONE_CLEAN_RE.sub("", phone or "")


class TemplateResolver:
    """Resolves template names inside a sandboxed directory and renders records"""

    def __init__(self, templates_dir: Path = TEMPLATES_DIR, default_template: str = DEFAULT_TEMPLATE):
        self.templates_dir = Path(templates_dir)
        self.default_template = default_template
        self._cache: Dict[str, Tuple[float, str]] = {}

    def _safe_path(self, name: str) -> Optional[Path]:
        if not is_valid_template_name(name):
            return None
        base = self.templates_dir.resolve()
        target = (base / name).resolve()
        # Symlinks or odd names must not escape the template directory
        if target.parent != base or not target.is_file():
            return None
        return target

    def _read(self, path: Path) -> str:
        mtime = path.stat().st_mtime
        cached = self._cache.get(str(path))
        if cached and cached[0] == mtime:
            return cached[1]
        content = path.read_text(encoding="utf-8")
        self._cache[str(path)] = (mtime, content)
        return content

    def resolve(self, name: str, fallback: bool = False) -> str:
        """
        Load template HTML by name.

        Args:
            name: Template file name, e.g. "signature_default.html"
            fallback: Use the default template when `name` is unknown or unsafe

        Raises:
            TemplateNotFound: when nothing usable was found
        """
        path = self._safe_path(name)
        if path is None and fallback and name != self.default_template:
            logger.warning("Template %r unavailable, using default", name, extra={"component": "templates"})
            path = self._safe_path(self.default_template)
        if path is None:
            raise TemplateNotFound(f"Template missing ({name})")
        content = self._read(path)
        if not content.strip():
            raise TemplateNotFound(f"Template empty ({name})")
        return content

    def render(self, template_html: str, fields: Mapping[str, str]) -> str:
        """Substitute {{FIELD}} placeholders; unknown placeholders are left as-is"""
        values = {key.upper(): html.escape(str(value or ""), quote=True) for key, value in fields.items()}
        values.setdefault("PHONE_CLEAN", clean_phone(fields.get("PHONE", "")))

        def _sub(match: "re.Match[str]") -> str:
            return values.get(match.group(1), match.group(0))

        return PLACEHOLDER_RE.sub(_sub, template_html)

    def render_record(self, template_name: str, fields: Mapping[str, str], fallback: bool = False) -> str:
        return self.render(self.resolve(template_name, fallback=fallback), fields)

