"""
Write the rendered site into a staging directory and swap it into place.

Nothing is written to site_dir until a build succeeds; a failed build removes
its staging directory and leaves the previous site untouched.
"""

import json
import logging
import os
import posixpath
import shutil
import tempfile
from typing import Any, Dict, List, Optional
from xml.sax.saxutils import escape

from jinja2 import (ChoiceLoader, Environment, FileSystemLoader, TemplateNotFound,
                    TemplateSyntaxError, select_autoescape)

from .errors import AuthorError, ErrorReport, SiteIOError

logger = logging.getLogger('Folio.assembler')

PACKAGE_TEMPLATES = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'templates')


def root_path(url: str) -> str:
    """Relative path from the page at url back to the site root."""
    directory = url if url.endswith('/') or not url else posixpath.dirname(url)
    depth = len([part for part in directory.split('/') if part])
    return '../' * depth


def create_environment(config) -> Environment:
    """Jinja2 environment: theme custom_dir first, then the bundled templates."""
    loaders = []
    if config.theme.custom_dir:
        custom_dir = os.path.join(config.config_dir, config.theme.custom_dir)
        if os.path.isdir(custom_dir):
            loaders.append(FileSystemLoader(custom_dir))
        else:
            logger.warning(f"Theme custom_dir not found: {custom_dir}")
    loaders.append(FileSystemLoader(PACKAGE_TEMPLATES))
    return Environment(
        loader=ChoiceLoader(loaders),
        autoescape=select_autoescape(['html', 'xml']),
        keep_trailing_newline=True,
    )


class SiteAssembler:
    """Collects every output file of one build in a staging directory."""

    def __init__(self, config, env: Environment, report: ErrorReport):
        self.config = config
        self.env = env
        self.report = report
        self.site_dir = config.site_path
        self.staging_dir: Optional[str] = None
        self._written: Dict[str, str] = {}

    def __enter__(self) -> 'SiteAssembler':
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        if self.staging_dir is not None:
            self.discard()
        return False

    def check_site_dir(self) -> None:
        """Refuse to replace a directory that holds the project's inputs."""
        site = os.path.realpath(self.site_dir)
        for label, path in (('config directory', self.config.config_dir),
                            ('docs directory', self.config.docs_path)):
            path = os.path.realpath(path)
            if site == path or path.startswith(site + os.sep):
                raise SiteIOError(f"site_dir must not contain the {label}", self.site_dir)

    def open(self) -> None:
        self.check_site_dir()
        parent = os.path.dirname(os.path.abspath(self.site_dir))
        try:
            os.makedirs(parent, exist_ok=True)
            self.staging_dir = tempfile.mkdtemp(prefix='.folio-staging-', dir=parent)
            os.chmod(self.staging_dir, 0o755)
        except OSError as e:
            raise SiteIOError(f"Cannot create staging directory: {e}", parent)
        self._written = {}
        logger.debug(f"Staging output in {self.staging_dir}")

    def output_path(self, rel_path: str) -> str:
        return os.path.join(self.staging_dir, *rel_path.split('/'))

    def written_files(self) -> List[str]:
        return sorted(self._written)

    def _claim(self, rel_path: str, source: str) -> None:
        previous = self._written.get(rel_path)
        if previous is not None:
            self.report.add(AuthorError(
                f"Output '{rel_path}' is produced by both {previous} and {source}", source))
        self._written[rel_path] = source

    def write_file(self, rel_path: str, content, source: str = 'site') -> None:
        """Write text or bytes to rel_path inside the staging directory."""
        rel_path = rel_path.lstrip('/')
        self._claim(rel_path, source)
        path = self.output_path(rel_path)
        try:
            os.makedirs(os.path.dirname(path), exist_ok=True)
            if isinstance(content, bytes):
                with open(path, 'wb') as f:
                    f.write(content)
            else:
                with open(path, 'w', encoding='utf-8', newline='\n') as f:
                    f.write(content)
        except OSError as e:
            raise SiteIOError(f"Failed to write output file: {e}", path)

    def write_json(self, rel_path: str, data: Any, source: str = 'site') -> None:
        self.write_file(rel_path, json.dumps(data, ensure_ascii=False, separators=(',', ':')),
                        source=source)

    def copy_file(self, src: str, rel_path: str) -> None:
        self._claim(rel_path, rel_path)
        path = self.output_path(rel_path)
        try:
            os.makedirs(os.path.dirname(path), exist_ok=True)
            shutil.copyfile(src, path)
        except OSError as e:
            raise SiteIOError(f"Failed to copy static file: {e}", src)

    def render(self, template_name: str, url: str, **context) -> str:
        context.setdefault('relative_path', root_path(url))
        context.setdefault('page_url', url)
        try:
            template = self.env.get_template(template_name)
        except (TemplateNotFound, TemplateSyntaxError) as e:
            raise SiteIOError(f"Template error: {e}", template_name)
        return template.render(**context)

    def render_page(self, template_name: str, url: str, source: str = None, **context) -> None:
        """Render a template to <url>/index.html (or to url itself for a file name)."""
        html = self.render(template_name, url, **context)
        rel_path = url if url.endswith('.html') else url + 'index.html'
        self.write_file(rel_path, html, source=source or template_name)

    def write_sitemap(self, site_url: str, entries) -> None:
        """entries: (url, lastmod datetime or None) pairs."""
        lines = ['<?xml version="1.0" encoding="UTF-8"?>',
                 '<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">']
        for url, lastmod in sorted(entries, key=lambda entry: entry[0]):
            lines.append('<url>')
            lines.append(f'<loc>{escape(f"{site_url}/{url}")}</loc>')
            if lastmod is not None:
                lines.append(f"<lastmod>{lastmod.strftime('%Y-%m-%d')}</lastmod>")
            lines.append('</url>')
        lines.append('</urlset>')
        self.write_file('sitemap.xml', '\n'.join(lines) + '\n', source='sitemap')

    def commit(self) -> None:
        """Swap the staging directory into site_dir."""
        if self.staging_dir is None:
            raise SiteIOError("Nothing staged to commit", self.site_dir)
        backup = None
        try:
            if os.path.exists(self.site_dir):
                backup = tempfile.mkdtemp(prefix='.folio-previous-',
                                          dir=os.path.dirname(os.path.abspath(self.site_dir)))
                os.rmdir(backup)
                os.replace(self.site_dir, backup)
            os.replace(self.staging_dir, self.site_dir)
        except OSError as e:
            if backup is not None and not os.path.exists(self.site_dir):
                os.replace(backup, self.site_dir)
                backup = None
            raise SiteIOError(f"Failed to publish the built site: {e}", self.site_dir)
        finally:
            if backup is not None and os.path.exists(backup):
                shutil.rmtree(backup, ignore_errors=True)
        self.staging_dir = None
        logger.debug(f"Published {len(self._written)} file(s) to {self.site_dir}")

    def discard(self) -> None:
        if self.staging_dir is not None:
            shutil.rmtree(self.staging_dir, ignore_errors=True)
            logger.debug(f"Discarded staging directory {self.staging_dir}")
            self.staging_dir = None
