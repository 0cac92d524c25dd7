"""
Command-line entry point.

    deconfuser obfuscated.js -o clean.js --stats
    cat obfuscated.js | deconfuser - --skip string_concealing --beautify
"""

import argparse
import logging
import sys
from typing import List, Optional

import jsbeautifier

from deconfuser import __version__
from deconfuser.errors import ParseFailure
from deconfuser.runtime.oracle import DEFAULT_TIMEOUT_MS
from deconfuser.runtime.pipeline import PASS_ORDER, Deobfuscator
from deconfuser.utils.helpers import format_stats

logger = logging.getLogger(__name__)

PASS_NAMES = list(dict.fromkeys(PASS_ORDER))


def _pass_list(value: str) -> List[str]:
    names = [name.strip() for name in value.split(',') if name.strip()]
    unknown = [name for name in names if name not in PASS_NAMES]
    if unknown:
        raise argparse.ArgumentTypeError(
            f'unknown pass {", ".join(unknown)} (choose from {", ".join(PASS_NAMES)})')
    return names


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='deconfuser',
        description='Deobfuscate JavaScript produced by JS-Confuser.',
        epilog=f'Passes, in order: {", ".join(PASS_ORDER)}',
    )
    parser.add_argument('input', help="obfuscated script, or '-' for stdin")
    parser.add_argument('-o', '--output', metavar='FILE', default='-',
                        help="where to write the result (default: stdout)")
    parser.add_argument('--passes', type=_pass_list, metavar='A,B',
                        help='run only these passes')
    parser.add_argument('--skip', type=_pass_list, metavar='A,B', default=[],
                        help='do not run these passes')
    parser.add_argument('--timeout', type=int, metavar='MS', default=DEFAULT_TIMEOUT_MS,
                        help=f'sandbox time limit per evaluation (default: {DEFAULT_TIMEOUT_MS})')
    parser.add_argument('--beautify', action='store_true',
                        help='reformat the output with jsbeautifier')
    parser.add_argument('--stats', action='store_true',
                        help='print per-pass statistics to stderr')
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument('-v', '--verbose', action='count', default=0,
                           help='log templates found (-vv: debug)')
    verbosity.add_argument('-q', '--quiet', action='store_true',
                           help='only log errors')
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    return parser


def _configure_logging(verbose: int, quiet: bool) -> None:
    if quiet:
        level = logging.ERROR
    elif verbose >= 2:
        level = logging.DEBUG
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(level=level, format='%(levelname)s %(name)s: %(message)s')


def _read(path: str) -> str:
    if path == '-':
        return sys.stdin.read()
    with open(path, 'r', encoding='utf-8') as f:
        return f.read()


def _write(path: str, text: str) -> None:
    if path == '-':
        sys.stdout.write(text)
        return
    with open(path, 'w', encoding='utf-8') as f:
        f.write(text)


def beautify(code: str) -> str:
    opts = jsbeautifier.default_options()
    opts.indent_size = 2
    return jsbeautifier.beautify(code, opts)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    _configure_logging(args.verbose, args.quiet)

    selected = args.passes if args.passes is not None else PASS_NAMES
    passes = [name for name in selected if name not in args.skip]

    try:
        source = _read(args.input)
    except OSError as e:
        print(f'deconfuser: cannot read {args.input}: {e}', file=sys.stderr)
        return 1

    deobfuscator = Deobfuscator(passes=passes, oracle_timeout_ms=args.timeout)
    try:
        result = deobfuscator.run(source)
    except ParseFailure as e:
        print(f'deconfuser: {e}', file=sys.stderr)
        return 1

    code = beautify(result.code) if args.beautify else result.code
    try:
        _write(args.output, code if code.endswith('\n') else code + '\n')
    except OSError as e:
        print(f'deconfuser: cannot write {args.output}: {e}', file=sys.stderr)
        return 1

    if args.stats:
        print(format_stats(result.stats, result.timings), file=sys.stderr)
        print(f'oracle: {result.oracle_stats}', file=sys.stderr)
        print(f'total: {result.elapsed_ms:.2f} ms', file=sys.stderr)
    return 0


if __name__ == '__main__':
    sys.exit(main())
