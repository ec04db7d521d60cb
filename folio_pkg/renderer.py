"""
Markdown rendering for Folio.

Every document goes through the same ordered extension pipeline. The order of
PIPELINE is the order extensions are registered with Python-Markdown, whatever
order they are listed in the configuration file.
"""

import html
import logging
import re
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

import markdown
from pymdownx.snippets import SnippetMissingError

from .errors import AuthorError, RenderError

logger = logging.getLogger('Folio.renderer')

FENCE_RE = re.compile(r'^(?P<indent>[ \t]*)(?P<fence>`{3,}|~{3,})(?P<info>.*)$')
TAG_RE = re.compile(r'<[^>]+>')
WHITESPACE_RE = re.compile(r'\s+')


@dataclass(frozen=True)
class ExtensionStage:
    """One step of the rendering pipeline."""
    name: str
    defaults: Tuple[Tuple[str, object], ...] = ()
    signature: Optional[str] = None
    implicit: bool = False

    def matches(self, text: str) -> Optional[int]:
        """Line number (1-based) of the first use of this stage's syntax."""
        if not self.signature:
            return None
        match = re.search(self.signature, text, re.MULTILINE)
        if match is None:
            return None
        return text.count('\n', 0, match.start()) + 1


# Snippets must run first so included text goes through the rest of the
# pipeline; highlight has to be configured before superfences and
# inlinehilite read its settings; toc runs last over the final headings.
PIPELINE: Tuple[ExtensionStage, ...] = (
    ExtensionStage('pymdownx.snippets', signature=r'^[ \t]*;?-{1,}8<-{1,}'),
    ExtensionStage('pymdownx.highlight'),
    ExtensionStage('codehilite'),
    ExtensionStage('pymdownx.superfences'),
    ExtensionStage('fenced_code', implicit=True),
    ExtensionStage('pymdownx.inlinehilite'),
    ExtensionStage('admonition', signature=r'^[ \t]*!!![ \t]+[\w-]+'),
    ExtensionStage('pymdownx.details', signature=r'^[ \t]*\?\?\?\+?[ \t]+[\w-]+'),
    ExtensionStage('pymdownx.tabbed', signature=r'^[ \t]*===\+?[ \t]+"'),
    ExtensionStage('pymdownx.tasklist'),
    ExtensionStage('pymdownx.mark'),
    ExtensionStage('pymdownx.caret'),
    ExtensionStage('pymdownx.tilde'),
    ExtensionStage('pymdownx.keys'),
    ExtensionStage('abbr'),
    ExtensionStage('attr_list'),
    ExtensionStage('def_list'),
    ExtensionStage('footnotes'),
    ExtensionStage('md_in_html'),
    ExtensionStage('tables'),
    ExtensionStage('toc'),
)

PIPELINE_NAMES = frozenset(stage.name for stage in PIPELINE)


@dataclass(frozen=True)
class Rendered:
    html: str
    toc: str = ''
    problems: Tuple[Exception, ...] = ()


def _as_pairs(extensions) -> Tuple[Tuple[str, dict], ...]:
    pairs = []
    for item in extensions:
        if isinstance(item, tuple):
            name, options = item
        else:
            name, options = item.name, item.options
        pairs.append((name, _plain(options or {})))
    return tuple(pairs)


def _plain(value):
    if hasattr(value, 'items'):
        return {key: _plain(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(item) for item in value]
    return value


def scan_fences(text: str):
    """
    Mask fenced code blocks.

    Returns (text with fenced lines blanked, line number of an unclosed fence or None).
    """
    lines = text.split('\n')
    masked = []
    open_char, open_len, open_line = None, 0, None
    for number, line in enumerate(lines, start=1):
        match = FENCE_RE.match(line)
        if open_char is None:
            if match and not (match.group('fence')[0] == '`' and '`' in match.group('info')):
                open_char = match.group('fence')[0]
                open_len = len(match.group('fence'))
                open_line = number
                masked.append('')
            else:
                masked.append(line)
            continue
        masked.append('')
        stripped = line.strip()
        if (match and stripped.startswith(open_char * open_len)
                and not stripped.lstrip(open_char).strip()):
            open_char, open_len, open_line = None, 0, None
    return '\n'.join(masked), open_line


def build_pipeline(extensions, snippet_paths=(), check_paths=True):
    """
    Resolve enabled extensions into Python-Markdown arguments, in pipeline order.

    Returns (extension names, extension configs, enabled names).
    """
    enabled = dict(_as_pairs(extensions))
    names = []
    configs = {}
    for stage in PIPELINE:
        if stage.implicit:
            if 'pymdownx.superfences' in enabled:
                continue
        elif stage.name not in enabled:
            continue
        config = dict(stage.defaults)
        config.update(enabled.get(stage.name, {}))
        if stage.name == 'pymdownx.snippets':
            if not config.get('base_path') and snippet_paths:
                config['base_path'] = [str(path) for path in snippet_paths]
            config['check_paths'] = check_paths
        names.append(stage.name)
        if config:
            configs[stage.name] = config
    return names, configs, frozenset(enabled)


def render_markdown(text: str, extensions: Iterable = (), strict: bool = False,
                    snippet_paths: Iterable[str] = ()) -> Rendered:
    """
    Render Markdown to HTML with the enabled extensions.

    Problems (unclosed fences, syntax of disabled extensions, missing snippets)
    are returned rather than raised so a build can collect them for every
    document. In strict mode a missing snippet is not re-rendered best-effort.
    """
    extensions = _as_pairs(extensions)
    snippet_paths = tuple(snippet_paths)
    problems = []

    masked, unclosed = scan_fences(text)
    if unclosed is not None:
        problems.append(RenderError('Unclosed fenced code block', line=unclosed))

    names, configs, enabled = build_pipeline(extensions, snippet_paths)
    for stage in PIPELINE:
        if stage.name in enabled or stage.implicit:
            continue
        line = stage.matches(masked)
        if line is not None:
            problems.append(RenderError(
                f"Syntax of the '{stage.name}' extension is used but the extension "
                "is not enabled; rendered as literal text", line=line))

    md = markdown.Markdown(extensions=names, extension_configs=configs)
    try:
        body = md.convert(text)
    except SnippetMissingError as e:
        problems.append(AuthorError(f"Snippet inclusion failed: {e}"))
        if strict:
            return Rendered(html='', problems=tuple(problems))
        names, configs, _ = build_pipeline(extensions, snippet_paths, check_paths=False)
        md = markdown.Markdown(extensions=names, extension_configs=configs)
        body = md.convert(text)

    toc = getattr(md, 'toc', '') if 'toc' in names else ''
    return Rendered(html=body, toc=toc, problems=tuple(problems))


def render_job(job):
    """Process-pool entry point: (index, text, extensions, strict, snippet_paths)."""
    index, text, extensions, strict, snippet_paths = job
    return index, render_markdown(text, extensions, strict, snippet_paths)


def plain_text(content: str) -> str:
    """Strip tags and collapse whitespace."""
    text = TAG_RE.sub(' ', content)
    text = html.unescape(text)
    return WHITESPACE_RE.sub(' ', text).strip()


def generate_excerpt(content: str, words: int = 30) -> str:
    """Generate an excerpt from rendered content."""
    parts = plain_text(content).split()
    if len(parts) > words:
        return ' '.join(parts[:words]) + '...'
    return ' '.join(parts)
