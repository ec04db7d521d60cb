"""
Content discovery: find Markdown sources, split front matter, and turn each
file into a Post or a Page.
"""

import html as html_lib
import logging
import math
import os
import posixpath
import re
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterator, Optional, Tuple

import yaml

from .errors import AuthorError, ErrorReport, SiteIOError
from .renderer import scan_fences

logger = logging.getLogger('Folio.content')

DATE_PREFIX_RE = re.compile(r'^(?P<date>\d{4}-\d{2}-\d{2})[-_](?P<name>.+)$')
HEADING_RE = re.compile(r'^#\s+(?P<title>.+?)\s*#*\s*$')
CJK_RE = re.compile(r"[\u3040-\u30ff\u3400-\u4dbf\u4e00-\u9fff\uac00-\ud7af]")
WORD_RE = re.compile(r"[A-Za-z0-9]+(?:'[A-Za-z0-9]+)?")
DATE_FORMATS = ['%Y-%m-%dT%H:%M:%S', '%Y-%m-%d %H:%M:%S', '%Y-%m-%d %H:%M', '%Y-%m-%d', '%b %d, %Y']
WORDS_PER_MINUTE = 265


class FrontMatterLoader(yaml.SafeLoader):
    """SafeLoader that keeps timestamps naming no real day (2024-02-30) as strings."""


def _construct_timestamp(loader, node):
    try:
        return loader.construct_yaml_timestamp(node)
    except ValueError:
        return loader.construct_scalar(node)


FrontMatterLoader.add_constructor('tag:yaml.org,2002:timestamp', _construct_timestamp)


@dataclass(frozen=True)
class SourceFile:
    """A Markdown file found under the docs directory."""
    path: str
    rel_path: str
    mtime: float


@dataclass
class Document:
    rel_path: str
    path: str
    meta: Dict[str, Any]
    title: str
    body: str
    url: str = ''
    body_line: int = 1
    html: str = ''
    toc: str = ''

    @property
    def source_dir(self) -> str:
        return posixpath.dirname(self.rel_path)


@dataclass
class Page(Document):
    pass


@dataclass
class Post(Document):
    date: datetime = datetime.min
    updated: Optional[datetime] = None
    categories: Tuple[str, ...] = ()
    tags: Tuple[str, ...] = ()
    slug: str = ''
    teaser: Optional[str] = None
    teaser_html: str = ''
    readtime: int = 1
    draft: bool = False

    @property
    def formatted_date(self) -> str:
        return self.date.strftime('%B %d, %Y')

    @property
    def sort_key(self):
        return (self.date, self.rel_path)


def slugify(text: str) -> str:
    text = text.lower()
    text = re.sub(r"[^\w]+", "-", text, flags=re.UNICODE)
    text = text.strip("-_").replace("_", "-")
    return text or "post"


def count_words(text: str) -> int:
    text = html_lib.unescape(text)
    cjk_count = len(CJK_RE.findall(text))
    text = CJK_RE.sub(" ", text)
    return cjk_count + len(WORD_RE.findall(text))


def discover(root: str) -> Iterator[SourceFile]:
    """Yield every Markdown source under root, walking directories in sorted order."""
    if not os.path.isdir(root):
        raise SiteIOError("Docs directory does not exist", root)
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if not d.startswith('.'))
        for filename in sorted(filenames):
            if filename.startswith('.') or not filename.endswith('.md'):
                continue
            path = os.path.join(dirpath, filename)
            rel_path = os.path.relpath(path, root).replace(os.sep, '/')
            yield SourceFile(path=path, rel_path=rel_path, mtime=os.path.getmtime(path))


def blog_prefix(blog_dir: str) -> str:
    prefix = posixpath.normpath(blog_dir.replace(os.sep, '/')).strip('/')
    return '' if prefix == '.' else prefix + '/'


def is_post(source: SourceFile, blog_dir: str = '.') -> bool:
    """Date-prefixed file names and files under <blog_dir>/posts/ are posts."""
    if DATE_PREFIX_RE.match(posixpath.basename(source.rel_path)):
        return True
    return source.rel_path.startswith(blog_prefix(blog_dir) + 'posts/')


def split_front_matter(text: str):
    """
    Split a leading `---` block from the body.

    Returns (front matter text or None, body, line number where the body starts).
    """
    text = text.lstrip('\ufeff')
    lines = text.split('\n')
    if not lines or lines[0].strip() != '---':
        return None, text, 1
    for index in range(1, len(lines)):
        if lines[index].strip() in ('---', '...'):
            return '\n'.join(lines[1:index]), '\n'.join(lines[index + 1:]), index + 2
    return None, text, 1


def parse_date(value) -> Optional[datetime]:
    """Parse a front-matter date value; None if it cannot be understood."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        parsed = None
        text = value.strip()
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            for fmt in DATE_FORMATS:
                try:
                    parsed = datetime.strptime(text, fmt)
                    break
                except ValueError:
                    continue
        if parsed is None:
            return None
    else:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def lookup_meta(meta: Dict[str, Any], path: str):
    """Follow a dotted path such as `date.created` into front matter."""
    value: Any = meta
    for part in path.split('.'):
        if not isinstance(value, dict) or part not in value:
            return None
        value = value[part]
    return value


def extract_title(meta: Dict[str, Any], body: str) -> Tuple[str, str]:
    if isinstance(meta.get('title'), str) and meta['title'].strip():
        return meta['title'].strip(), body
    lines = body.split('\n')
    for i, line in enumerate(lines):
        stripped = line.strip()
        match = HEADING_RE.match(stripped)
        if match:
            new_body = '\n'.join(lines[i + 1:]).lstrip('\n')
            return match.group('title'), new_body
        if stripped:
            break
    return 'Untitled', body


def split_teaser(body: str, separator: str) -> Tuple[Optional[str], str]:
    """Split the body at the first separator line outside fenced code."""
    masked, _ = scan_fences(body)
    lines = body.split('\n')
    for index, line in enumerate(masked.split('\n')):
        if line.strip() == separator:
            teaser = '\n'.join(lines[:index]).rstrip()
            full = '\n'.join(lines[:index] + lines[index + 1:])
            return teaser, full
    return None, body


def _key_line(front: str, key: str) -> int:
    """Line number of `key:` in the file (front matter starts at line 2)."""
    for index, line in enumerate(front.split('\n')):
        if re.match(rf'^{re.escape(key)}\s*:', line):
            return index + 2
    return 1


def _labels(meta, key, source, front, report) -> Tuple[str, ...]:
    value = meta.get(key)
    if value is None:
        return ()
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        report.add(AuthorError(f"'{key}' must be a list of strings", source.rel_path,
                               _key_line(front, key)))
        return ()
    labels = []
    for item in value:
        if not isinstance(item, str):
            report.add(AuthorError(f"'{key}' entries must be strings, got {item!r}",
                                   source.rel_path, _key_line(front, key)))
            continue
        item = item.strip()
        if item and item not in labels:
            labels.append(item)
    return tuple(labels)


def read_source(source: SourceFile) -> str:
    try:
        with open(source.path, 'r', encoding='utf-8') as f:
            return f.read()
    except (OSError, UnicodeDecodeError) as e:
        raise SiteIOError(f"Failed to read markdown file: {e}", source.path)


def load_document(source: SourceFile, blog: Dict[str, Any], report: ErrorReport):
    """Read one source file and return a Post or a Page."""
    text = read_source(source)
    front, body, body_line = split_front_matter(text)
    meta: Dict[str, Any] = {}
    if front is not None:
        try:
            loaded = yaml.load(front, Loader=FrontMatterLoader)
        except yaml.YAMLError as e:
            line = None
            mark = getattr(e, 'problem_mark', None)
            if mark is not None:
                line = mark.line + 2
            report.add(AuthorError(f"Invalid YAML front matter: {e}", source.rel_path, line))
            loaded = {}
        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            report.add(AuthorError("Front matter must be a mapping", source.rel_path, 1))
            loaded = {}
        meta = loaded
    front = front or ''

    title, body = extract_title(meta, body)

    if not is_post(source, blog['blog_dir']):
        return Page(rel_path=source.rel_path, path=source.path, meta=meta, title=title,
                    body=body, url=page_url(source.rel_path), body_line=body_line)

    created, updated = _post_dates(meta, source, front, report)

    teaser, full = split_teaser(body, blog['post_excerpt_separator'])
    if teaser is None and blog['post_excerpt'] == 'required':
        report.add(AuthorError(
            f"Missing excerpt separator '{blog['post_excerpt_separator']}'", source.rel_path))

    if isinstance(meta.get('slug'), str) and meta['slug'].strip():
        slug = slugify(meta['slug'])
    else:
        stem = posixpath.splitext(posixpath.basename(source.rel_path))[0]
        prefixed = DATE_PREFIX_RE.match(stem)
        slug = slugify(prefixed.group('name') if prefixed else stem)

    categories = _labels(meta, 'categories', source, front, report)
    post = Post(
        rel_path=source.rel_path, path=source.path, meta=meta, title=title,
        body=full, body_line=body_line, date=created, updated=updated,
        categories=categories, tags=_labels(meta, 'tags', source, front, report),
        slug=slug, teaser=teaser, draft=meta.get('draft') is True,
        readtime=max(1, math.ceil(count_words(full) / WORDS_PER_MINUTE)),
    )
    post.url = post_url(post, blog)
    return post


def _post_dates(meta, source, front, report):
    raw = meta.get('date')
    updated = None
    if isinstance(raw, dict):
        if raw.get('updated') is not None:
            updated = parse_date(raw['updated'])
            if updated is None:
                report.add(AuthorError(f"Unparseable 'date.updated' value {raw['updated']!r}",
                                       source.rel_path, _key_line(front, 'date')))
        raw = raw.get('created')

    created = parse_date(raw) if raw is not None else None
    if created is None:
        if raw is None:
            message = "Missing required 'date' in front matter"
        else:
            message = f"Unparseable 'date' value {raw!r}"
        report.add(AuthorError(message, source.rel_path, _key_line(front, 'date')))
        created = datetime.fromtimestamp(source.mtime, timezone.utc).replace(tzinfo=None)
    return created, updated


def page_url(rel_path: str) -> str:
    stem = posixpath.splitext(rel_path)[0]
    if posixpath.basename(stem) in ('index', 'README'):
        stem = posixpath.dirname(stem)
    return stem + '/' if stem else ''


def post_url(post: Post, blog: Dict[str, Any]) -> str:
    path = blog['post_url_format'].format(
        date=post.date.strftime(blog['post_url_date_format']),
        slug=post.slug,
        categories='/'.join(slugify(c) for c in post.categories),
        file=posixpath.splitext(posixpath.basename(post.rel_path))[0],
    )
    path = re.sub(r'/{2,}', '/', path).strip('/')
    return blog_prefix(blog['blog_dir']) + path + '/'
