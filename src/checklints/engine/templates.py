"""Template rendering for file checks.

Rendering is delegated to Jinja2.  Templates are looked up next to the rule
document first, then in the user-wide template directories.  An absolute
template path is looked up in its own directory instead of the rule
document's.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

import jinja2
import jinja2.meta

from checklints.errors import RenderError

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

logger = logging.getLogger(__name__)


class TemplateRenderer(Protocol):
    """What the check engine needs from a template service."""

    def render(self, template: str, context: Mapping[str, Any], base_dir: Path) -> str: ...

    def referenced_names(self, template: str, base_dir: Path) -> set[str]: ...


class JinjaRenderer:
    """Render Jinja2 templates with strict undefined handling and exact whitespace.

    One :class:`jinja2.Environment` is kept per base directory, so parsed
    templates are reused across checks from the same rule document.
    """

    def __init__(self, extra_dirs: Iterable[Path] = ()) -> None:
        self.extra_dirs = [Path(d) for d in extra_dirs]
        self._environments: dict[Path, jinja2.Environment] = {}
        self._lock = threading.Lock()

    def _environment(self, base_dir: Path) -> jinja2.Environment:
        with self._lock:
            env = self._environments.get(base_dir)
            if env is None:
                search_path = [str(base_dir), *(str(d) for d in self.extra_dirs)]
                env = jinja2.Environment(
                    loader=jinja2.FileSystemLoader(search_path),
                    undefined=jinja2.StrictUndefined,
                    keep_trailing_newline=True,
                    autoescape=False,  # noqa: S701
                )
                self._environments[base_dir] = env
            return env

    def _locate(self, template: str, base_dir: Path) -> tuple[str, Path]:
        path = Path(template)
        if path.is_absolute():
            return path.name, path.parent
        return template, base_dir

    def _source(self, env: jinja2.Environment, template: str) -> str:
        assert env.loader is not None
        source, _filename, _uptodate = env.loader.get_source(env, template)
        return source

    def render(self, template: str, context: Mapping[str, Any], base_dir: Path) -> str:
        """Render *template* with *context*; raise :class:`RenderError` on any failure."""
        name, base_dir = self._locate(template, base_dir)
        env = self._environment(base_dir)
        try:
            compiled = env.get_template(name)
            return compiled.render(dict(context))
        except jinja2.TemplateNotFound as exc:
            msg = f"template '{template}' not found (searched {base_dir}"
            if self.extra_dirs:
                msg += ", " + ", ".join(str(d) for d in self.extra_dirs)
            msg += ")"
            raise RenderError(msg) from exc
        except jinja2.TemplateSyntaxError as exc:
            msg = f"template '{template}' line {exc.lineno}: {exc.message}"
            raise RenderError(msg) from exc
        except jinja2.TemplateError as exc:
            msg = f"template '{template}': {exc}"
            raise RenderError(msg) from exc
        except OSError as exc:
            msg = f"template '{template}' could not be read: {exc}"
            raise RenderError(msg) from exc

    def referenced_names(self, template: str, base_dir: Path) -> set[str]:
        """Return the free variables *template* reads.

        Templates it pulls in by a constant name (``{% include %}`` and the
        like) are followed as well.  Unreadable or malformed templates report no names;
        :meth:`render` surfaces the actual error.
        """
        name, base_dir = self._locate(template, base_dir)
        env = self._environment(base_dir)
        names: set[str] = set()
        pending = [name]
        seen: set[str] = set()
        while pending:
            current = pending.pop()
            if current in seen:
                continue
            seen.add(current)
            try:
                ast = env.parse(self._source(env, current))
            except (jinja2.TemplateError, OSError):
                continue
            names |= jinja2.meta.find_undeclared_variables(ast)
            pending.extend(
                ref for ref in jinja2.meta.find_referenced_templates(ast) if ref is not None
            )
        return names
