#!/usr/bin/env python3
"""
Settings loader for the Folio static blog generator.
Supports configuration from folio.yml, mkdocs.yml or folio.json files and turns
it into an immutable SiteConfig.
"""

import os
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml

from .errors import ConfigError, SiteIOError
from .plugins import PLUGINS
from .renderer import PIPELINE_NAMES

logger = logging.getLogger('Folio.settings')


class Feature(Enum):
    """Theme feature toggles."""
    ANNOUNCE_DISMISS = 'announce.dismiss'
    CONTENT_ACTION_EDIT = 'content.action.edit'
    CONTENT_ACTION_VIEW = 'content.action.view'
    CONTENT_CODE_ANNOTATE = 'content.code.annotate'
    CONTENT_CODE_COPY = 'content.code.copy'
    CONTENT_TABS_LINK = 'content.tabs.link'
    CONTENT_TOOLTIPS = 'content.tooltips'
    HEADER_AUTOHIDE = 'header.autohide'
    NAVIGATION_EXPAND = 'navigation.expand'
    NAVIGATION_FOOTER = 'navigation.footer'
    NAVIGATION_INDEXES = 'navigation.indexes'
    NAVIGATION_INSTANT = 'navigation.instant'
    NAVIGATION_INSTANT_PREFETCH = 'navigation.instant.prefetch'
    NAVIGATION_INSTANT_PROGRESS = 'navigation.instant.progress'
    NAVIGATION_PATH = 'navigation.path'
    NAVIGATION_PRUNE = 'navigation.prune'
    NAVIGATION_SECTIONS = 'navigation.sections'
    NAVIGATION_TABS = 'navigation.tabs'
    NAVIGATION_TABS_STICKY = 'navigation.tabs.sticky'
    NAVIGATION_TOP = 'navigation.top'
    NAVIGATION_TRACKING = 'navigation.tracking'
    SEARCH_HIGHLIGHT = 'search.highlight'
    SEARCH_SHARE = 'search.share'
    SEARCH_SUGGEST = 'search.suggest'
    TOC_FOLLOW = 'toc.follow'
    TOC_INTEGRATE = 'toc.integrate'


def freeze(value):
    """Return a read-only deep copy of a parsed YAML value."""
    if isinstance(value, Mapping):
        return MappingProxyType({key: freeze(item) for key, item in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(freeze(item) for item in value)
    return value


def thaw(value):
    """Inverse of freeze: plain dicts and lists."""
    if isinstance(value, Mapping):
        return {key: thaw(item) for key, item in value.items()}
    if isinstance(value, tuple):
        return [thaw(item) for item in value]
    return value


@dataclass(frozen=True)
class PaletteVariant:
    scheme: str
    primary: Optional[str] = None
    accent: Optional[str] = None
    toggle_icon: Optional[str] = None
    toggle_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {'scheme': self.scheme}
        if self.primary is not None:
            data['primary'] = self.primary
        if self.accent is not None:
            data['accent'] = self.accent
        if self.toggle_icon is not None or self.toggle_name is not None:
            toggle = {}
            if self.toggle_icon is not None:
                toggle['icon'] = self.toggle_icon
            if self.toggle_name is not None:
                toggle['name'] = self.toggle_name
            data['toggle'] = toggle
        return data


@dataclass(frozen=True)
class FontConfig:
    text: Optional[str] = None
    code: Optional[str] = None


@dataclass(frozen=True)
class ThemeConfig:
    name: str = 'material'
    custom_dir: Optional[str] = None
    language: str = 'en'
    features: Tuple[Feature, ...] = ()
    icon: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    palette: Tuple[PaletteVariant, ...] = ()
    font: Optional[FontConfig] = None

    def has_feature(self, name) -> bool:
        if isinstance(name, str):
            return any(feature.value == name for feature in self.features)
        return name in self.features

    @property
    def feature_names(self) -> Tuple[str, ...]:
        return tuple(feature.value for feature in self.features)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {'name': self.name}
        if self.custom_dir is not None:
            data['custom_dir'] = self.custom_dir
        if self.language != 'en':
            data['language'] = self.language
        if self.features:
            data['features'] = list(self.feature_names)
        if self.icon:
            data['icon'] = dict(self.icon)
        if self.palette:
            data['palette'] = [variant.to_dict() for variant in self.palette]
        if self.font is not None:
            font = {}
            if self.font.text is not None:
                font['text'] = self.font.text
            if self.font.code is not None:
                font['code'] = self.font.code
            data['font'] = font
        return data


@dataclass(frozen=True)
class ExtensionSpec:
    """A markdown extension name with its (read-only) options."""
    name: str
    options: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    def to_item(self):
        if self.options:
            return {self.name: thaw(self.options)}
        return self.name


@dataclass(frozen=True)
class PluginSpec:
    """A plugin name with its (read-only) options."""
    name: str
    options: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    def to_item(self):
        if self.options:
            return {self.name: thaw(self.options)}
        return self.name


@dataclass(frozen=True)
class SiteConfig:
    """Immutable site configuration, created once per build."""
    site_name: str
    site_url: Optional[str] = None
    site_author: Optional[str] = None
    site_description: Optional[str] = None
    repo_name: Optional[str] = None
    repo_url: Optional[str] = None
    copyright: Optional[str] = None
    theme: ThemeConfig = field(default_factory=ThemeConfig)
    markdown_extensions: Tuple[ExtensionSpec, ...] = ()
    plugins: Tuple[PluginSpec, ...] = ()
    remote_branch: str = 'gh-pages'
    remote_name: str = 'origin'
    strict: bool = False
    docs_dir: str = 'docs'
    site_dir: str = 'site'
    extra: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    config_dir: str = '.'

    @property
    def docs_path(self) -> str:
        return os.path.normpath(os.path.join(self.config_dir, self.docs_dir))

    @property
    def site_path(self) -> str:
        return os.path.normpath(os.path.join(self.config_dir, self.site_dir))

    def plugin(self, name) -> Optional[PluginSpec]:
        for spec in self.plugins:
            if spec.name == name:
                return spec
        return None

    def extension(self, name) -> Optional[ExtensionSpec]:
        for spec in self.markdown_extensions:
            if spec.name == name:
                return spec
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Recognised fields in the shape they are written in a config file."""
        data: Dict[str, Any] = {'site_name': self.site_name}
        for key in ('site_url', 'site_author', 'site_description',
                    'repo_name', 'repo_url', 'copyright'):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        data['theme'] = self.theme.to_dict()
        if self.markdown_extensions:
            data['markdown_extensions'] = [spec.to_item() for spec in self.markdown_extensions]
        if self.plugins:
            data['plugins'] = [spec.to_item() for spec in self.plugins]
        data['remote_branch'] = self.remote_branch
        if self.remote_name != 'origin':
            data['remote_name'] = self.remote_name
        data['strict'] = self.strict
        if self.docs_dir != 'docs':
            data['docs_dir'] = self.docs_dir
        if self.site_dir != 'site':
            data['site_dir'] = self.site_dir
        if self.extra:
            data['extra'] = thaw(self.extra)
        return data


class _Validator:
    """Collects every problem found while reading a raw config mapping."""

    def __init__(self):
        self.problems: List[str] = []

    def problem(self, message: str) -> None:
        self.problems.append(message)

    def optional_str(self, raw, key, default=None):
        value = raw.get(key, default)
        if value is None or isinstance(value, str):
            return value
        self.problem(f"'{key}' must be a string, got {type(value).__name__}")
        return default

    def str_value(self, raw, key, default):
        value = raw.get(key, default)
        if isinstance(value, str) and value:
            return value
        self.problem(f"'{key}' must be a non-empty string")
        return default

    def named_items(self, raw, key) -> List[Tuple[str, Dict[str, Any]]]:
        """Read a list of `name` or `{name: {options}}` entries."""
        value = raw.get(key)
        if value is None:
            return []
        if isinstance(value, Mapping):
            value = [{name: options} for name, options in value.items()]
        if not isinstance(value, list):
            self.problem(f"'{key}' must be a list")
            return []
        items = []
        for index, item in enumerate(value):
            if isinstance(item, str):
                items.append((item, {}))
            elif isinstance(item, Mapping) and len(item) == 1:
                name, options = next(iter(item.items()))
                if options is None:
                    options = {}
                if not isinstance(name, str) or not isinstance(options, Mapping):
                    self.problem(f"'{key}[{index}]' must map a name to an options mapping")
                    continue
                items.append((name, dict(options)))
            else:
                self.problem(f"'{key}[{index}]' must be a name or a single-key mapping")
        return items


class SiteSettings:
    """Load and validate Folio configuration settings."""

    # Config file names to look for (in order of preference)
    CONFIG_FILES = ['folio.yml', 'folio.yaml', 'mkdocs.yml', 'mkdocs.yaml', 'folio.json']

    TOP_LEVEL_KEYS = {
        'site_name', 'site_url', 'site_author', 'site_description',
        'repo_name', 'repo_url', 'copyright', 'theme', 'markdown_extensions',
        'plugins', 'remote_branch', 'remote_name', 'strict', 'docs_dir',
        'site_dir', 'extra',
    }

    THEME_KEYS = {'name', 'custom_dir', 'language', 'features', 'icon', 'palette', 'font'}

    def __init__(self, config_dir: str = None, config_file: str = None):
        """
        Initialize settings loader.

        Args:
            config_dir: Directory to look for config files. Defaults to current directory.
            config_file: Explicit config file; overrides the search.
        """
        if config_file:
            self.config_dir = os.path.dirname(os.path.abspath(config_file))
        else:
            self.config_dir = os.path.abspath(config_dir or os.getcwd())
        self.config_file_path = os.path.abspath(config_file) if config_file else None
        self.raw: Dict[str, Any] = {}

    def load_settings(self, overrides: Optional[Dict[str, Any]] = None) -> SiteConfig:
        """
        Read the configuration file, merge overrides and validate it.

        Returns:
            The validated SiteConfig

        Raises:
            SiteIOError: no config file, or it cannot be read
            ConfigError: the file cannot be parsed, or (strict) any field is malformed
        """
        config_file = self.config_file_path or self._find_config_file()
        if not config_file:
            raise SiteIOError(
                f"No configuration file found (looked for {', '.join(self.CONFIG_FILES)})",
                self.config_dir)
        self.config_file_path = config_file
        self.raw = self._load_config_file(config_file)
        logger.debug(f"Loaded configuration from: {config_file}")
        merged = self.merge_with_args(overrides or {})
        return self.validate(merged)

    def _find_config_file(self) -> Optional[str]:
        """
        Find the first available configuration file.

        Returns:
            Path to config file or None if not found
        """
        for filename in self.CONFIG_FILES:
            config_path = os.path.join(self.config_dir, filename)
            if os.path.exists(config_path):
                return config_path
        return None

    def _load_config_file(self, config_path: str) -> Dict[str, Any]:
        """
        Load configuration from a file.

        Args:
            config_path: Path to the configuration file

        Returns:
            Dictionary of configuration settings
        """
        file_ext = os.path.splitext(config_path)[1].lower()
        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                if file_ext in ['.yml', '.yaml']:
                    data = yaml.safe_load(f)
                elif file_ext == '.json':
                    data = json.load(f)
                else:
                    raise ConfigError(f"Unsupported config file format: {file_ext}")
        except FileNotFoundError:
            raise SiteIOError("Configuration file not found", config_path)
        except PermissionError:
            raise SiteIOError("Permission denied reading configuration file", config_path)
        except UnicodeDecodeError as e:
            raise SiteIOError(f"Configuration file is not UTF-8: {e}", config_path)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in configuration file {config_path}: {e}")
        except (yaml.YAMLError, ValueError) as e:
            raise ConfigError(f"Invalid YAML in configuration file {config_path}: {e}")
        except OSError as e:
            raise SiteIOError(f"Error reading configuration file: {e}", config_path)

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError(f"Configuration file must contain a mapping: {config_path}")
        return data

    def merge_with_args(self, args_dict: Dict[str, Any]) -> Dict[str, Any]:
        """
        Merge configuration settings with command-line arguments.
        Command-line arguments take precedence over config file settings.

        Args:
            args_dict: Dictionary of command-line arguments

        Returns:
            Merged configuration dictionary
        """
        merged = dict(self.raw)
        for key, value in args_dict.items():
            if value is not None:
                merged[key] = value
        return merged

    def validate(self, raw: Dict[str, Any]) -> SiteConfig:
        """Turn a raw mapping into a SiteConfig, collecting every problem."""
        check = _Validator()

        strict = raw.get('strict', False)
        if not isinstance(strict, bool):
            check.problem(f"'strict' must be a boolean, got {strict!r}")
            strict = True

        for key in sorted(set(raw) - self.TOP_LEVEL_KEYS, key=str):
            check.problem(f"Unrecognised configuration key '{key}'")

        site_name = check.str_value(raw, 'site_name', 'Untitled site')
        site_url = check.optional_str(raw, 'site_url')
        if site_url:
            site_url = site_url.rstrip('/')

        extensions = []
        for name, options in check.named_items(raw, 'markdown_extensions'):
            if name not in PIPELINE_NAMES:
                check.problem(f"Unknown markdown extension '{name}'")
                continue
            extensions.append(ExtensionSpec(name, freeze(options)))

        plugins = []
        for name, options in check.named_items(raw, 'plugins'):
            plugin_cls = PLUGINS.get(name)
            if plugin_cls is None:
                check.problem(f"Unknown plugin '{name}'")
                continue
            option_problems = plugin_cls.validate_options(options)
            for message in option_problems:
                check.problem(f"Plugin '{name}': {message}")
            if name == 'rss' and not site_url:
                option_problems.append("requires 'site_url' to be set")
                check.problem("Plugin 'rss' requires 'site_url' to be set")
            if option_problems:
                continue
            plugins.append(PluginSpec(name, freeze(options)))

        extra = raw.get('extra') or {}
        if not isinstance(extra, Mapping):
            check.problem("'extra' must be a mapping")
            extra = {}

        config = SiteConfig(
            site_name=site_name,
            site_url=site_url,
            site_author=check.optional_str(raw, 'site_author'),
            site_description=check.optional_str(raw, 'site_description'),
            repo_name=check.optional_str(raw, 'repo_name'),
            repo_url=check.optional_str(raw, 'repo_url'),
            copyright=check.optional_str(raw, 'copyright'),
            theme=self._validate_theme(raw.get('theme'), check),
            markdown_extensions=tuple(extensions),
            plugins=tuple(plugins),
            remote_branch=check.str_value(raw, 'remote_branch', 'gh-pages'),
            remote_name=check.str_value(raw, 'remote_name', 'origin'),
            strict=strict,
            docs_dir=check.str_value(raw, 'docs_dir', 'docs'),
            site_dir=check.str_value(raw, 'site_dir', 'site'),
            extra=freeze(extra),
            config_dir=self.config_dir,
        )

        if check.problems:
            if strict:
                raise ConfigError(check.problems)
            for message in check.problems:
                logger.warning(f"Config: {message} (using default)")
        return config

    def _validate_theme(self, raw, check: _Validator) -> ThemeConfig:
        if raw is None:
            return ThemeConfig()
        if isinstance(raw, str):
            return ThemeConfig(name=raw)
        if not isinstance(raw, Mapping):
            check.problem("'theme' must be a name or a mapping")
            return ThemeConfig()

        for key in sorted(set(raw) - self.THEME_KEYS, key=str):
            check.problem(f"Unrecognised theme key '{key}'")

        features = []
        raw_features = raw.get('features') or []
        if not isinstance(raw_features, list):
            check.problem("'theme.features' must be a list")
            raw_features = []
        for value in raw_features:
            try:
                feature = Feature(value)
            except ValueError:
                check.problem(f"Unknown theme feature '{value}'")
                continue
            if feature not in features:
                features.append(feature)

        icon = raw.get('icon') or {}
        if not isinstance(icon, Mapping) or not all(
                isinstance(k, str) and isinstance(v, str) for k, v in icon.items()):
            check.problem("'theme.icon' must map names to strings")
            icon = {}

        palette = raw.get('palette') or []
        if isinstance(palette, Mapping):
            palette = [palette]
        variants = []
        if not isinstance(palette, list):
            check.problem("'theme.palette' must be a list")
            palette = []
        for index, entry in enumerate(palette):
            variant = self._validate_palette_entry(entry, index, check)
            if variant is not None:
                variants.append(variant)

        font = raw.get('font')
        font_config = None
        if isinstance(font, Mapping):
            text, code = font.get('text'), font.get('code')
            if (text is None or isinstance(text, str)) and (code is None or isinstance(code, str)):
                font_config = FontConfig(text=text, code=code)
            else:
                check.problem("'theme.font' text and code must be strings")
        elif font not in (None, False):
            check.problem("'theme.font' must be a mapping or false")

        return ThemeConfig(
            name=check.str_value(raw, 'name', 'material'),
            custom_dir=check.optional_str(raw, 'custom_dir'),
            language=check.str_value(raw, 'language', 'en'),
            features=tuple(features),
            icon=MappingProxyType(dict(icon)),
            palette=tuple(variants),
            font=font_config,
        )

    def _validate_palette_entry(self, entry, index, check: _Validator) -> Optional[PaletteVariant]:
        where = f"theme.palette[{index}]"
        if not isinstance(entry, Mapping):
            check.problem(f"'{where}' must be a mapping")
            return None
        scheme = entry.get('scheme')
        if not isinstance(scheme, str):
            check.problem(f"'{where}.scheme' is required")
            return None
        toggle = entry.get('toggle') or {}
        if not isinstance(toggle, Mapping):
            check.problem(f"'{where}.toggle' must be a mapping")
            toggle = {}
        values = {
            'primary': entry.get('primary'),
            'accent': entry.get('accent'),
            'toggle_icon': toggle.get('icon'),
            'toggle_name': toggle.get('name'),
        }
        for key, value in values.items():
            if value is not None and not isinstance(value, str):
                check.problem(f"'{where}' {key} must be a string")
                values[key] = None
        return PaletteVariant(scheme=scheme, **values)

    def create_sample_config(self, file_format: str = 'yml') -> str:
        """
        Create a sample configuration file.

        Args:
            file_format: Format for config file ('yml', 'yaml', or 'json')

        Returns:
            Path to created sample config file
        """
        sample_config = {
            'site_name': 'My Blog',
            'site_url': 'https://example.com',
            'site_author': 'Your Name',
            'site_description': 'Thoughts on programming and beyond',
            'copyright': 'Copyright &copy; Your Name',
            'theme': {
                'name': 'material',
                'features': ['content.code.copy', 'navigation.top'],
                'palette': [
                    {'scheme': 'default', 'primary': 'teal', 'accent': 'teal',
                     'toggle': {'icon': 'material/weather-sunny', 'name': 'Switch to dark mode'}},
                    {'scheme': 'slate', 'primary': 'teal', 'accent': 'teal',
                     'toggle': {'icon': 'material/weather-night', 'name': 'Switch to light mode'}},
                ],
            },
            'markdown_extensions': [
                {'pymdownx.highlight': {'anchor_linenums': True}},
                'pymdownx.inlinehilite',
                'pymdownx.snippets',
                'pymdownx.superfences',
                {'toc': {'permalink': '#'}},
                'admonition',
                'pymdownx.details',
            ],
            'plugins': [
                {'blog': {'blog_dir': '.', 'archive': True, 'categories': True}},
                'search',
                'tags',
                {'rss': {'match_path': '/posts/.*',
                         'date_from_meta': {'as_creation': 'date.created',
                                            'as_update': 'date.updated'}}},
            ],
            'strict': False,
        }

        filename = f'folio.{file_format}'
        config_path = os.path.join(self.config_dir, filename)

        try:
            with open(config_path, 'w', encoding='utf-8') as f:
                if file_format in ['yml', 'yaml']:
                    f.write("# Folio configuration file\n")
                    yaml.safe_dump(sample_config, f, sort_keys=False, allow_unicode=True)
                elif file_format == 'json':
                    json.dump(sample_config, f, indent=2)
                else:
                    raise ConfigError(f"Unsupported config file format: {file_format}")
        except PermissionError:
            raise SiteIOError("Permission denied creating configuration file", config_path)
        except OSError as e:
            raise SiteIOError(f"Error writing configuration file: {e}", config_path)

        return config_path


def load_config(config_file: str = None, config_dir: str = None, **overrides) -> SiteConfig:
    """Shortcut: locate, read and validate a configuration."""
    return SiteSettings(config_dir=config_dir, config_file=config_file).load_settings(overrides)
