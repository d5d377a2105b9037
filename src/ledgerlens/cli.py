"""
ledgerlens CLI - Command-line interface.

Usage:
    ledgerlens init ./my-ledger                     # Create starter config
    ledgerlens test-pattern "STARBUCKS*" "STARBUCKS #1234"
    ledgerlens classify "AMAZON MKTPL*123" --config ./my-ledger/config
    ledgerlens group vendors.csv --format json      # Suggest vendor groupings
    ledgerlens defaults                             # List built-in rules
"""

import argparse
import csv
import json
import logging
import os
import sys


# Terminal color support
def _supports_color():
    """Check if the terminal supports color output."""
    if not sys.stdout.isatty():
        return False
    if os.environ.get('NO_COLOR'):
        return False
    if os.environ.get('FORCE_COLOR'):
        return True
    term = os.environ.get('TERM', '')
    return term != 'dumb'


class _Colors:
    """ANSI color codes with automatic detection."""
    def __init__(self):
        if _supports_color():
            self.RESET = '\033[0m'
            self.BOLD = '\033[1m'
            self.DIM = '\033[2m'
            self.GREEN = '\033[32m'
            self.YELLOW = '\033[33m'
        else:
            self.RESET = ''
            self.BOLD = ''
            self.DIM = ''
            self.GREEN = ''
            self.YELLOW = ''


C = _Colors()

from ._version import VERSION
from .config_loader import DEFAULT_SETTINGS_FILE, load_config
from .default_rules import DEFAULT_PATTERN_RULES
from .entity_index import EntityIndex, suggest_for
from .glob_pattern import compile_glob
from .grouping import EntityInfo, GroupingConfig
from .rule_engine import RULE_COLUMNS, RuleEngine, RuleParseError, load_rules_csv

logger = logging.getLogger(__name__)


STARTER_SETTINGS = '''# ledgerlens settings
#
# rules_file: CSV of categorization rules, relative to this directory
# grouping.similarity_threshold: minimum LCP similarity (0-1) for two names
#   to be grouped. 0.6 groups variants aggressively, 0.8 is stricter.
# grouping.min_name_length: names shorter than this (after normalization)
#   are never grouped.

rules_file: rules.csv

grouping:
  similarity_threshold: 0.6
  min_name_length: 3
  debug: false
'''

STARTER_RULES = '''# Categorization rules
#
# rule_type: pattern (custom, evaluated first) or default_pattern
# pattern: glob matched against the whole name, case-insensitive
#   *  any characters    ?  one character    [abc]  one of    {A,B}  either
# rule_order: order within the rule type (use gaps of 10)
#
# Example:
# 1,pattern,STARBUCKS*,12,10,1
''' + ','.join(RULE_COLUMNS) + '\n'


def find_config_dir():
    """Find the config directory.

    Resolution order:
    1. LEDGERLENS_CONFIG environment variable (if set and exists)
    2. ./config

    Returns None if no config directory is found.
    """
    env_config = os.environ.get('LEDGERLENS_CONFIG')
    if env_config:
        env_path = os.path.abspath(env_config)
        if os.path.isdir(env_path):
            return env_path

    local = os.path.abspath('config')
    if os.path.isdir(local):
        return local

    return None


def init_config(target_dir):
    """Initialize a new config directory with starter files."""
    config_dir = os.path.join(target_dir, 'config')
    os.makedirs(config_dir, exist_ok=True)

    files_created = []
    files_skipped = []

    for filename, content in (('settings.yaml', STARTER_SETTINGS), ('rules.csv', STARTER_RULES)):
        path = os.path.join(config_dir, filename)
        if os.path.exists(path):
            files_skipped.append(f'config/{filename}')
            continue
        with open(path, 'w', encoding='utf-8') as f:
            f.write(content)
        files_created.append(f'config/{filename}')

    return files_created, files_skipped


def _fail(message):
    print(f"Error: {message}", file=sys.stderr)
    sys.exit(1)


def _load_optional_config(args):
    """Load settings when a config directory is given or can be found."""
    config_dir = args.config or find_config_dir()
    if not config_dir:
        return None
    try:
        return load_config(config_dir, args.settings)
    except (FileNotFoundError, ValueError) as e:
        _fail(e)


def _parse_id(value):
    value = (value or '').strip()
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        return value


def load_entities_csv(path):
    """Read entities from a CSV with id,name[,parent_id] columns."""
    if not os.path.exists(path):
        raise FileNotFoundError(f"Entities file not found: {path}")

    entities = []
    with open(path, 'r', encoding='utf-8', newline='') as f:
        reader = csv.DictReader(f)
        missing = [c for c in ('id', 'name') if c not in (reader.fieldnames or [])]
        if missing:
            raise ValueError(f"Entities file missing column(s): {', '.join(missing)}")
        for row in reader:
            entity_id = _parse_id(row['id'])
            if entity_id is None:
                continue
            entities.append(EntityInfo(
                id=entity_id,
                name=row['name'],
                parent_id=_parse_id(row.get('parent_id')),
            ))
    return entities


def cmd_init(args):
    """Handle the 'init' subcommand."""
    target_dir = os.path.abspath(args.dir)
    rel_target = os.path.relpath(target_dir)

    print(f"Initializing ledger directory: {C.BOLD}{rel_target}{C.RESET}")
    print()

    created, skipped = init_config(target_dir)
    for f in sorted(created + skipped):
        if f in created:
            print(f"  {C.GREEN}✓{C.RESET} {f}")
        else:
            print(f"  {C.YELLOW}→{C.RESET} {C.DIM}{f} (exists){C.RESET}")


def cmd_test_pattern(args):
    """Handle the 'test-pattern' subcommand."""
    matcher = compile_glob(args.pattern)
    if not matcher.is_valid:
        print(f"Warning: pattern never matches ({matcher.error})", file=sys.stderr)

    any_match = False
    for name in args.names:
        matched = matcher.test(name)
        any_match = any_match or matched
        mark = f"{C.GREEN}match{C.RESET}" if matched else f"{C.DIM}no match{C.RESET}"
        print(f"{mark}  {name}")

    if not any_match:
        sys.exit(1)


def cmd_classify(args):
    """Handle the 'classify' subcommand."""
    if args.rules:
        rules_path = args.rules
    else:
        config = _load_optional_config(args)
        if config is None:
            _fail("No rules file. Pass --rules or run 'ledgerlens init' to create a config.")
        rules_path = config['_rules_path']

    try:
        engine = RuleEngine(load_rules_csv(rules_path))
    except RuleParseError as e:
        _fail(f"{rules_path}: {e}")

    if not engine.rules:
        _fail(f"No rules loaded from {rules_path}")

    results = engine.apply_all(args.names)

    if args.format == 'json':
        output = [
            {
                'name': name,
                'category_id': result.category_id,
                'matched_rule_id': result.matched_rule_id,
            }
            for name, result in zip(args.names, results)
        ]
        print(json.dumps(output, indent=2))
        return

    for name, result in zip(args.names, results):
        if result.matched:
            print(f"{name}: category {result.category_id} (rule {result.matched_rule_id})")
        else:
            print(f"{name}: {C.DIM}uncategorized{C.RESET}")


def cmd_group(args):
    """Handle the 'group' subcommand."""
    config = _load_optional_config(args)
    grouping = config['grouping_config'] if config else GroupingConfig()

    try:
        grouping = GroupingConfig(
            similarity_threshold=args.threshold if args.threshold is not None else grouping.similarity_threshold,
            min_name_length=args.min_length if args.min_length is not None else grouping.min_name_length,
            debug=args.debug or grouping.debug,
        )
        index = EntityIndex.from_entities(load_entities_csv(args.entities))
    except (FileNotFoundError, ValueError) as e:
        _fail(e)

    if not index.depth_ok():
        _fail("Entities file nests deeper than parent/child or references unknown parents")

    suggestions = suggest_for(index, grouping)

    if args.format == 'json':
        print(json.dumps([s.to_dict() for s in suggestions], indent=2))
        return

    if not suggestions:
        print("No grouping suggestions.")
        return

    print(f"GROUPING SUGGESTIONS ({len(suggestions)})")
    print("=" * 60)
    for i, s in enumerate(suggestions, 1):
        target = f"existing #{s.parent_id}" if s.is_existing_parent else "new"
        print(f"{i}. {C.BOLD}{s.parent_name}{C.RESET} ({target}, normalized: {s.normalized_form!r})")
        for child_id, child_name in zip(s.child_ids, s.child_names):
            print(f"   - {child_name} [{child_id}]")
        print()


def cmd_defaults(args):
    """Handle the 'defaults' subcommand."""
    if args.format == 'json':
        output = [
            {'pattern': pattern, 'category': category, 'rule_order': (i + 1) * 10}
            for i, (pattern, category) in enumerate(DEFAULT_PATTERN_RULES)
        ]
        print(json.dumps(output, indent=2))
        return

    for pattern, category in DEFAULT_PATTERN_RULES:
        print(f"{category:<16} {pattern}")


def _add_config_args(parser):
    parser.add_argument(
        '--config', '-c',
        help='Path to config directory (default: $LEDGERLENS_CONFIG or ./config)'
    )
    parser.add_argument(
        '--settings', '-s',
        default=DEFAULT_SETTINGS_FILE,
        help='Settings file name (default: settings.yaml)'
    )


def build_parser():
    parser = argparse.ArgumentParser(
        prog='ledgerlens',
        description='Categorize counterparty names with glob rules and suggest name groupings.',
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        '-v', '--verbose',
        action='count',
        default=0,
        help='Increase log verbosity (-v for info, -vv for debug)'
    )

    subparsers = parser.add_subparsers(dest='command', title='commands', metavar='<command>')

    init_parser = subparsers.add_parser(
        'init',
        help='Create a config directory with starter settings and rules'
    )
    init_parser.add_argument(
        'dir',
        nargs='?',
        default='.',
        help='Directory to initialize (default: current directory)'
    )

    test_parser = subparsers.add_parser(
        'test-pattern',
        help='Check which names a glob pattern matches'
    )
    test_parser.add_argument('pattern', help='Glob pattern, e.g. "{UBER,LYFT}*"')
    test_parser.add_argument('names', nargs='+', help='Names to test')

    classify_parser = subparsers.add_parser(
        'classify',
        help='Categorize names using the rules file'
    )
    classify_parser.add_argument('names', nargs='+', help='Counterparty names to categorize')
    classify_parser.add_argument('--rules', '-r', help='Rules CSV (default: rules_file from settings)')
    classify_parser.add_argument(
        '--format', '-f',
        choices=['text', 'json'],
        default='text',
        help='Output format: text (default), json'
    )
    _add_config_args(classify_parser)

    group_parser = subparsers.add_parser(
        'group',
        help='Suggest parent/child groupings for entity names',
        description='Read entities (id,name,parent_id) from a CSV file and suggest groupings.'
    )
    group_parser.add_argument('entities', help='CSV file with id,name,parent_id columns')
    group_parser.add_argument('--threshold', type=float, help='Override similarity threshold (0-1)')
    group_parser.add_argument('--min-length', type=int, help='Override minimum normalized name length')
    group_parser.add_argument('--debug', action='store_true', help='Log the grouping trace')
    group_parser.add_argument(
        '--format', '-f',
        choices=['text', 'json'],
        default='text',
        help='Output format: text (default), json'
    )
    _add_config_args(group_parser)

    defaults_parser = subparsers.add_parser(
        'defaults',
        help='List the built-in default rules'
    )
    defaults_parser.add_argument(
        '--format', '-f',
        choices=['text', 'json'],
        default='text',
        help='Output format: text (default), json'
    )

    subparsers.add_parser('version', help='Show version information')

    return parser


def _log_level(args):
    """-vv means DEBUG; -v or --debug mean INFO."""
    if args.verbose >= 2:
        return logging.DEBUG
    if args.verbose == 1 or getattr(args, 'debug', False):
        return logging.INFO
    return logging.WARNING


def main(argv=None):
    """Main entry point for ledgerlens CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(level=_log_level(args), format='%(levelname)s %(name)s: %(message)s')

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    if args.command == 'init':
        cmd_init(args)
    elif args.command == 'test-pattern':
        cmd_test_pattern(args)
    elif args.command == 'classify':
        cmd_classify(args)
    elif args.command == 'group':
        cmd_group(args)
    elif args.command == 'defaults':
        cmd_defaults(args)
    elif args.command == 'version':
        print(f"ledgerlens {VERSION}")


if __name__ == '__main__':
    main()
