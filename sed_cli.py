#!/usr/bin/env python3
"""
docsed command line

Apply sed-style expressions to a Google Doc.

Usage:
    python sed_cli.py DOC_ID 's/foo/**bar**/g'
    python sed_cli.py DOC_ID -e 's/^/# Title\\n/' -e 's/draft/final/g'
    python sed_cli.py DOC_ID -f edits.sed --json
    cat edits.sed | python sed_cli.py DOC_ID --dry-run
"""
import argparse
import asyncio
import json
import logging
import os
import sys
from typing import List, Optional, TextIO

from dotenv import load_dotenv

# Load environment variables
dotenv_path = os.path.join(os.path.dirname(os.path.abspath(__file__)), '.env')
load_dotenv(dotenv_path=dotenv_path)

# Suppress googleapiclient discovery cache warning
logging.getLogger('googleapiclient.discovery_cache').setLevel(logging.ERROR)

logging.basicConfig(
    level=os.getenv('LOG_LEVEL', 'WARNING'),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

from googleapiclient.errors import HttpError  # noqa: E402

from core.config import SedConfig  # noqa: E402
from core.service import DocsAuthenticationError, build_docs_service  # noqa: E402
from core.utils import RetryExhaustedError  # noqa: E402
from docsed.errors import ErrorCode, SedError, StructuredError, no_expressions_error  # noqa: E402
from docsed.managers.expression_router import dry_run_lines  # noqa: E402
from docsed.managers.sed_runner import SedRunner  # noqa: E402
from docsed.sed_parser import parse_expressions  # noqa: E402


def read_expression_file(path: str) -> List[str]:
    """Expressions from a script file: one per line, blank and ``#`` lines skipped."""
    with open(path, "r", encoding="utf-8") as f:
        return [line.strip() for line in f if line.strip() and not line.strip().startswith("#")]


def collect_expressions(
    positional: Optional[str],
    expressions: Optional[List[str]],
    script_file: Optional[str],
    stdin: Optional[TextIO] = None,
) -> List[str]:
    """
    Gather raw expressions in order: positional, ``-e``, then ``-f``.

    stdin is consulted only when nothing else produced an expression and
    it is not a terminal.
    """
    collected = []
    if positional:
        collected.append(positional)
    collected.extend(expressions or [])
    if script_file:
        collected.extend(read_expression_file(script_file))

    if not collected and stdin is not None and not stdin.isatty():
        collected = [line.strip() for line in stdin if line.strip() and not line.strip().startswith("#")]
    return collected


def structured_error(error: BaseException) -> StructuredError:
    if isinstance(error, SedError):
        return error.to_structured()
    if isinstance(error, RetryExhaustedError):
        code = ErrorCode.RETRIES_EXHAUSTED
    else:
        code = ErrorCode.API_ERROR
    return StructuredError(code=code.value, message=str(error))


def emit_error(error: BaseException, as_json: bool) -> None:
    structured = structured_error(error)
    if as_json:
        print(structured.to_json())
    else:
        print(f"error: {structured.message}", file=sys.stderr)
        if structured.suggestion:
            print(f"hint: {structured.suggestion}", file=sys.stderr)


async def run_expressions(doc_id: str, raw: List[str], config: SedConfig):
    exprs = parse_expressions(raw)
    service = build_docs_service(config.credentials_file)
    runner = SedRunner(service, doc_id, config)
    return await runner.run(exprs)


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Apply sed-style expressions to a Google Doc",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument('doc_id', metavar='DOC_ID',
                        help='ID of the Google Doc to edit')
    parser.add_argument('expression', metavar='EXPRESSION', nargs='?',
                        help='sed expression, e.g. s/old/new/g')
    parser.add_argument('-e', '--expression', dest='expressions', action='append',
                        help='Additional expression (repeatable)')
    parser.add_argument('-f', '--file', dest='script_file',
                        help='Read expressions from a file, one per line')
    parser.add_argument('--dry-run', action='store_true',
                        help='Parse and describe expressions without touching the document')
    parser.add_argument('--json', action='store_true',
                        help='Print the result as JSON')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Enable verbose logging')
    args = parser.parse_args(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.INFO)

    try:
        raw = collect_expressions(args.expression, args.expressions, args.script_file, sys.stdin)
        if not raw:
            raise no_expressions_error()

        if args.dry_run:
            for line in dry_run_lines(parse_expressions(raw)):
                print(line)
            return 0

        result = asyncio.run(run_expressions(args.doc_id, raw, SedConfig.from_env()))
    except SedError as e:
        logger.error(f"docsed failed on {args.doc_id}: {e.message}")
        emit_error(e, args.json)
        return 1
    except (DocsAuthenticationError, HttpError, RetryExhaustedError, OSError) as e:
        logger.error(f"docsed failed on {args.doc_id}: {e}", exc_info=True)
        emit_error(e, args.json)
        return 1

    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
    else:
        for line in result.text_lines():
            print(line)
    return 0


if __name__ == "__main__":
    sys.exit(main())
