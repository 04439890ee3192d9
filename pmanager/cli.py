"""
PManager - Command Line

Usage:
    pm <scope>[:<index>] <key chain...>
    pm -s <texts...>
    pm -e|-m [-f] <scope>[:<index>] <key chain...> <value>
    pm -c|-i <scope>[:<index>] <key chain...> <value>
    pm -d [-f] <scope>[:<index>] <key chain...>
    pm --move <scope>[:<index>] <scope>[:<index>]
    pm --import [<file path>|<url>]
    pm --export [<file path>]
    pm --hashcode | --reset-passphrase | --lock
    pm --config [<config key>] [<config value>]
"""

import argparse
import logging
import sys
from typing import List, Optional, Tuple

from . import __version__
from .config import default_config_path, load_config, update_config
from .exceptions import PManagerError, ValidationError
from .model import ALL, WILDCARD
from .storage import Response, Storage
from .utils import HELP_EPILOG, ask_secret, print_obj


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='pm',
        description='PManager helps manage your secret information securely. '
                    'Private data is encrypted and stored locally; keep your passphrase safe.',
        epilog=HELP_EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument('args', nargs='*', metavar='ARG',
                        help='scope[:index], key chain and value, depending on the mode')

    modes = parser.add_argument_group('modes')
    modes.add_argument('-s', '--search', action='store_true',
                       help='search scopes containing the texts (joined by spaces)')
    modes.add_argument('-e', '-m', '--edit', action='store_true',
                       help='modify an existing sentence')
    modes.add_argument('-i', '--insert', action='store_true',
                       help='insert a new document at <index>; implies --create')
    modes.add_argument('-c', '--create', action='store_true',
                       help='create missing scope, document, objects and sentence')
    modes.add_argument('-d', '--delete', action='store_true',
                       help='delete a sentence; empty documents and scopes are cleaned')
    modes.add_argument('--move', action='store_true',
                       help='move a document, or rename a scope when no index is given')
    modes.add_argument('--import', dest='import_', action='store_true',
                       help='import data from a file, a URL or standard input')
    modes.add_argument('--export', action='store_true',
                       help='export data to a file or standard output')
    modes.add_argument('--hashcode', action='store_true', help='print hash code of data')
    modes.add_argument('--reset-passphrase', action='store_true',
                       help='reset encryption passphrase')
    modes.add_argument('--lock', action='store_true',
                       help='forget the cached key so the next command asks again')
    modes.add_argument('--config', action='store_true',
                       help='list configuration, or set/unset <config key> [<config value>]')

    parser.add_argument('-f', '--force', action='store_true',
                        help='allow overwriting/deleting objects and whole documents')
    parser.add_argument('-U', '--no-fuzzy', dest='fuzzy', action='store_false',
                        help='disable fuzzy matching in query and search modes')
    parser.add_argument('-n', '--candidate', type=int, metavar='N',
                        help='pick candidate N when several scopes match')
    parser.add_argument('--verbose', action='store_true', help='log debug messages')
    parser.add_argument('-v', '--version', action='version', version=__version__)
    return parser


def parse_target(text: str, query: bool = False) -> Tuple[str, object]:
    """
    Split "<scope>[:<index>]".

    The index defaults to "all" in query mode and 1 otherwise. "*" selects
    every scope, in query mode only.
    """
    scope, index = text, (ALL if query else 1)
    head, sep, tail = text.rpartition(':')
    if sep and (tail.isdigit() or (query and tail == ALL)):
        scope, index = head, (ALL if tail == ALL else int(tail))

    scope = scope.strip()
    if scope == WILDCARD:
        if not query:
            raise ValidationError(f'Scope name cannot be "{WILDCARD}".')
        return '', index
    if not scope:
        raise ValidationError('Scope name cannot be empty.')
    return scope, index


def _has_index(text: str) -> bool:
    head, sep, tail = text.rpartition(':')
    return bool(sep) and tail.isdigit()


def report(res: Response) -> int:
    """Print a Response and return the exit status."""
    if res.success:
        if res.message:
            print(res.message)
        if res.data is not None:
            print_obj(res.data)
        return 0
    print(res.message, file=sys.stderr)
    if res.data is not None:
        print_obj(res.data)
    return 1


def usage_error(message: str) -> int:
    print(f'{message}\nUse --help for more information.', file=sys.stderr)
    return 1


def run_config(args: List[str]) -> int:
    if len(args) == 0:
        print(f'User configuration file path: "{default_config_path()}"')
        print_obj(load_config().as_dict())
        return 0
    update_config(args[0], args[1] if len(args) > 1 else None)
    return 0


def run(opts: argparse.Namespace) -> int:
    args = opts.args

    if opts.config:
        return run_config(args)

    storage = Storage(load_config(), ask_secret)

    if opts.lock:
        return report(storage.lock())
    if opts.reset_passphrase:
        return report(storage.reset_passphrase())
    if opts.hashcode:
        res = storage.hashcode()
        if res.success:
            print(int(res.data, 16) % 10**6)
            return 0
        return report(res)
    if opts.search:
        if len(args) == 0:
            return usage_error('Search texts cannot be missing.')
        return report(storage.search(' '.join(args), opts.candidate, opts.fuzzy))
    if opts.import_:
        return report(storage.import_(args[0] if args else None))
    if opts.export:
        return report(storage.export(args[0] if args else None))
    if opts.move:
        if len(args) != 2:
            return usage_error('Invalid number of arguments.')
        indexed = [_has_index(a) for a in args]
        if not any(indexed):
            return report(storage.rename(parse_target(args[0])[0], parse_target(args[1])[0]))
        if not all(indexed):
            return usage_error('Give an index for both documents, or neither to rename a scope.')
        scope1, index1 = parse_target(args[0])
        scope2, index2 = parse_target(args[1])
        return report(storage.move(scope1, index1, scope2, index2))

    if len(args) == 0:
        return usage_error('Scope name cannot be missing.')

    if opts.edit or opts.insert or opts.create:
        if len(args) < 3:
            return usage_error('Key chain and value cannot be missing.')
        scope, index = parse_target(args[0])
        return report(storage.set(scope, index, args[1:-1], args[-1],
                                  opts.insert, opts.create, opts.force))
    if opts.delete:
        scope, index = parse_target(args[0])
        return report(storage.delete(scope, index, args[1:], opts.force))

    scope, index = parse_target(args[0], query=True)
    return report(storage.get(scope, index, args[1:], opts.candidate, opts.fuzzy))


def parse_argv(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """
    Parse flags given anywhere on the command line.

    Everything after the first "--" is taken as positional arguments.
    """
    argv = list(sys.argv[1:] if argv is None else argv)
    rest: List[str] = []
    if '--' in argv:
        split = argv.index('--')
        argv, rest = argv[:split], argv[split + 1:]
    opts = build_parser().parse_intermixed_args(argv)
    opts.args = list(opts.args or []) + rest
    return opts


def main(argv: Optional[List[str]] = None) -> int:
    opts = parse_argv(argv)
    logging.basicConfig(
        level=logging.DEBUG if opts.verbose else logging.WARNING,
        format='%(levelname)s %(name)s: %(message)s',
    )
    try:
        return run(opts)
    except ValidationError as e:
        return usage_error(str(e))
    except PManagerError as e:
        print(str(e), file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
