"""
Error types raised while building a Folio site.

ConfigError and SiteIOError abort a build immediately. AuthorError and
RenderError are collected by an ErrorReport and either logged (default) or
turned into a BuildFailed at the next barrier (strict mode).
"""

import logging
from typing import List, Optional


class FolioError(Exception):
    """Base class for every build error."""


class ConfigError(FolioError):
    """One or more configuration values are malformed."""

    def __init__(self, messages):
        if isinstance(messages, str):
            messages = [messages]
        self.messages = list(messages)
        super().__init__(messages)

    def __str__(self):
        if len(self.messages) == 1:
            return f"Config error: {self.messages[0]}"
        lines = [f"{len(self.messages)} config errors:"]
        lines.extend(f"  - {message}" for message in self.messages)
        return "\n".join(lines)


class _LocatedError(FolioError):
    """Error tied to a source file and, optionally, a line."""

    kind = 'Error'

    def __init__(self, message, path=None, line=None):
        self.message = message
        self.path = path
        self.line = line
        super().__init__(message)

    def __str__(self):
        location = ''
        if self.path:
            location = str(self.path)
            if self.line:
                location += f":{self.line}"
            location += ': '
        return f"{self.kind}: {location}{self.message}"


class AuthorError(_LocatedError):
    """Malformed front matter, bad date, broken link or snippet path."""

    kind = 'Author error'


class RenderError(_LocatedError):
    """Markdown that cannot be rendered by passing it through."""

    kind = 'Render error'


class SiteIOError(FolioError):
    """Unreadable input or unwritable output."""

    def __init__(self, message, path=None):
        self.message = message
        self.path = path
        super().__init__(message)

    def __str__(self):
        if self.path:
            return f"IO error: {self.path}: {self.message}"
        return f"IO error: {self.message}"


class BuildFailed(FolioError):
    """Strict mode collected author or render errors."""

    def __init__(self, errors):
        self.errors = list(errors)
        super().__init__(errors)

    def __str__(self):
        lines = [f"Build aborted in strict mode with {len(self.errors)} error(s):"]
        lines.extend(f"  - {error}" for error in self.errors)
        return "\n".join(lines)


class ErrorReport:
    """Collects author and render errors for one build."""

    def __init__(self, strict: bool = False, logger: Optional[logging.Logger] = None):
        self.strict = strict
        self.logger = logger or logging.getLogger('Folio')
        self.errors: List[FolioError] = []
        self.warnings = 0

    def add(self, error: FolioError) -> None:
        if self.strict:
            self.logger.error(str(error))
            self.errors.append(error)
        else:
            self.logger.warning(str(error))
            self.warnings += 1

    def extend(self, errors) -> None:
        for error in errors:
            self.add(error)

    def check(self) -> None:
        """Raise BuildFailed if strict mode has collected anything."""
        if self.errors:
            raise BuildFailed(self.errors)
