"""Test configuration and fixtures for Folio tests."""

import json
import pytest
import tempfile
import shutil
from datetime import datetime
from pathlib import Path

import yaml

from folio_pkg.content import Post
from folio_pkg.settings import SiteConfig


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    temp_dir = tempfile.mkdtemp()
    yield temp_dir
    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def write_file(temp_dir):
    """Write a text file relative to the temporary directory."""
    def _write(rel_path, content):
        path = Path(temp_dir) / rel_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding='utf-8')
        return str(path)
    return _write


DEFAULT_PLUGINS = [
    'blog',
    'tags',
    {'rss': {'match_path': '/posts/.*'}},
    'search',
]


@pytest.fixture
def make_site(temp_dir, write_file):
    """Create folio.yml plus docs/ files; returns the project directory."""
    def _make(config=None, files=None):
        data = {
            'site_name': 'Test Blog',
            'site_url': 'https://example.com',
            'markdown_extensions': ['admonition', 'toc'],
            'plugins': DEFAULT_PLUGINS,
        }
        data.update(config or {})
        write_file('folio.yml', yaml.dump(data, sort_keys=False))
        for rel_path, content in (files or {}).items():
            write_file(f'docs/{rel_path}', content)
        return temp_dir
    return _make


@pytest.fixture
def post_source():
    """Front matter plus body for a post file."""
    def _post(date='2024-01-15', title=None, categories=None, tags=None, body='Hello world.',
              extra=''):
        lines = ['---']
        if date is not None:
            lines.append(f'date: {date}')
        if title is not None:
            lines.append(f'title: {json.dumps(title)}')
        if categories is not None:
            lines.append(f'categories: {json.dumps(list(categories))}')
        if tags is not None:
            lines.append(f'tags: {json.dumps(list(tags))}')
        if extra:
            lines.append(extra)
        lines.append('---')
        lines.append('')
        lines.append(body)
        return '\n'.join(lines) + '\n'
    return _post


@pytest.fixture
def site_config():
    return SiteConfig(site_name='Test Blog', site_url='https://example.com')


@pytest.fixture
def make_post():
    """Build a Post in memory, without touching the file system."""
    def _make(rel_path, date, categories=(), tags=(), title=None, **kwargs):
        return Post(
            rel_path=rel_path,
            path=f'/docs/{rel_path}',
            meta=kwargs.pop('meta', {}),
            title=title or rel_path,
            body=kwargs.pop('body', ''),
            url=kwargs.pop('url', rel_path.replace('.md', '/')),
            date=date if isinstance(date, datetime) else datetime.strptime(date, '%Y-%m-%d'),
            categories=tuple(categories),
            tags=tuple(tags),
            **kwargs,
        )
    return _make
