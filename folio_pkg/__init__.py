"""
Folio - a static blog generator.

Folio reads a site configuration and a directory of Markdown posts and pages,
renders them through an ordered Python-Markdown extension pipeline, builds
category, tag and archive indexes and writes the finished site atomically.
"""

__version__ = "1.0.0"

from .core import BuildResult, Folio, build_site, setup_logging
from .errors import (AuthorError, BuildFailed, ConfigError, FolioError, RenderError,
                     SiteIOError)
from .settings import SiteConfig, SiteSettings, load_config

__all__ = [
    'Folio', 'BuildResult', 'build_site', 'setup_logging',
    'SiteConfig', 'SiteSettings', 'load_config',
    'FolioError', 'ConfigError', 'AuthorError', 'RenderError', 'SiteIOError', 'BuildFailed',
]
