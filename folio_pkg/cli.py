#!/usr/bin/env python3
"""
Command-line interface for Folio - static blog generator.
"""

import os
import sys
import argparse
import logging
from functools import partial
from http.server import SimpleHTTPRequestHandler, ThreadingHTTPServer
from typing import List, Optional

from . import __version__
from .core import Folio, setup_logging
from .errors import FolioError
from .settings import SiteSettings

SAMPLE_POST = """---
date:
  created: 2025-01-01
categories:
  - General
tags:
  - getting-started
---

# Welcome to Folio

This post was created by `folio init`. Everything above the excerpt marker is
shown on the blog index.

<!-- more -->

## Writing posts

Posts live in `docs/posts/` or use a date-prefixed name such as
`2025-01-01-welcome.md`. Front matter carries the date, categories and tags.

!!! note
    Run `folio build` to render the site into `site/`.
"""

SAMPLE_INTRO = """# Blog

Latest posts.
"""


def create_sample_content(docs_dir: str) -> List[str]:
    """Create a blog intro and one sample post; existing files are left alone."""
    created = []
    files = [
        (os.path.join(docs_dir, 'index.md'), SAMPLE_INTRO),
        (os.path.join(docs_dir, 'posts', 'welcome.md'), SAMPLE_POST),
    ]
    for path, content in files:
        if os.path.exists(path):
            print(f"File already exists: {os.path.relpath(path)}")
            continue
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, 'w', encoding='utf-8') as f:
            f.write(content)
        print(f"Created: {os.path.relpath(path)}")
        created.append(path)
    return created


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='folio', description='Folio - Static Blog Generator')
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    subparsers = parser.add_subparsers(dest='command')

    def add_build_options(sub):
        sub.add_argument('-f', '--config-file', type=str,
                         help='Configuration file (default: search the current directory)')
        sub.add_argument('-d', '--site-dir', type=str,
                         help='Output directory, overriding site_dir')
        sub.add_argument('-s', '--strict', action='store_true', default=None,
                         help='Abort on any author or render error')
        sub.add_argument('-j', '--workers', type=int,
                         help='Worker processes used to render large sites')
        sub.add_argument('-v', '--verbose', action='store_true',
                         help='Show debug output')
        sub.add_argument('--log-file', type=str,
                         help='Also write a detailed log to this file')

    build = subparsers.add_parser('build', help='Build the site')
    add_build_options(build)

    serve = subparsers.add_parser('serve', help='Build the site and serve it locally')
    add_build_options(serve)
    serve.add_argument('-a', '--dev-addr', type=str, default='127.0.0.1:8000',
                       help='Address to serve on (default: 127.0.0.1:8000)')

    init = subparsers.add_parser('init', help='Create a sample configuration and post')
    init.add_argument('--format', choices=['yml', 'yaml', 'json'], default='yml',
                      help='Configuration file format')
    init.add_argument('directory', nargs='?', default='.',
                      help='Project directory (default: current directory)')
    return parser


def run_build(args) -> Folio:
    settings_loader = SiteSettings(config_file=args.config_file)
    overrides = {'site_dir': args.site_dir, 'strict': args.strict}
    config = settings_loader.load_settings(overrides)
    generator = Folio(config, workers=args.workers)
    generator.build()
    return generator


def parse_address(address: str):
    host, _, port = address.rpartition(':')
    if not host or not port.isdigit():
        raise argparse.ArgumentTypeError(f"Invalid address '{address}', expected HOST:PORT")
    return host, int(port)


def serve(site_dir: str, address: str) -> None:
    host, port = parse_address(address)
    handler = partial(SimpleHTTPRequestHandler, directory=site_dir)
    logger = logging.getLogger('Folio')
    with ThreadingHTTPServer((host, port), handler) as httpd:
        logger.info(f"Serving {site_dir} on http://{host}:{port}/ (Ctrl+C to stop)")
        try:
            httpd.serve_forever()
        except KeyboardInterrupt:
            logger.info("Serving stopped")


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1

    if args.command == 'init':
        try:
            settings_loader = SiteSettings(config_dir=args.directory)
            config_path = settings_loader.create_sample_config(args.format)
        except FolioError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
        print(f"Created sample configuration file: {config_path}")
        create_sample_content(os.path.join(settings_loader.config_dir, 'docs'))
        print("\nYour new Folio site is ready! Run 'folio build' to build it.")
        return 0

    setup_logging(verbose=args.verbose, log_file=args.log_file)
    try:
        generator = run_build(args)
        if args.command == 'serve':
            serve(generator.config.site_path, args.dev_addr)
    except argparse.ArgumentTypeError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except FolioError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
