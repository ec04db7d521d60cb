"""
Rewrite links between documents once every document has a URL.
"""

import posixpath
import re
from typing import Dict, List, Tuple
from urllib.parse import unquote

LINK_RE = re.compile(r'(?P<attr>\b(?:href|src))="(?P<url>[^"]*)"')
SCHEME_RE = re.compile(r'^[a-zA-Z][a-zA-Z0-9+.-]*:')


def relative_url(from_url: str, to_url: str) -> str:
    """Relative link from the page at from_url to to_url (both site-relative)."""
    start = from_url.rstrip('/') or '.'
    is_dir = to_url == '' or to_url.endswith('/')
    target = to_url.rstrip('/') or '.'
    rel = posixpath.relpath(target, start)
    if is_dir:
        return './' if rel == '.' else rel + '/'
    return rel


def resolve_links(html: str, source_dir: str, page_url: str,
                  url_map: Dict[str, str]) -> Tuple[str, List[str]]:
    """
    Point relative links at the output location of their target.

    url_map maps source paths (relative to the docs directory) to output URLs.
    Returns the new HTML and the Markdown targets that could not be found.
    """
    broken: List[str] = []

    def repl(match):
        url = match.group('url')
        if not url or url.startswith(('#', '/')) or SCHEME_RE.match(url):
            return match.group(0)
        path, hash_mark, fragment = url.partition('#')
        path, query_mark, query = path.partition('?')
        target = posixpath.normpath(posixpath.join(source_dir, unquote(path)))
        if target in url_map:
            new_url = relative_url(page_url, url_map[target])
            if query_mark:
                new_url += '?' + query
            if hash_mark:
                new_url += '#' + fragment
            return f'{match.group("attr")}="{new_url}"'
        if path.endswith('.md'):
            broken.append(url)
        return match.group(0)

    return LINK_RE.sub(repl, html), broken
