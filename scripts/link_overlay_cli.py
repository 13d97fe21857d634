#!/usr/bin/env python3
"""Administer the link dictionary and preview rendered articles.

Dictionary changes rebuild the snapshot immediately. Structured results go
to stdout as JSON, log messages to stderr.

Usage:
    python3 scripts/link_overlay_cli.py --db data/links.duckdb \\
      add-term "Machine Learning" "What is Machine Learning?" --alias ML

    python3 scripts/link_overlay_cli.py add-alias 3 "neural nets"
    python3 scripts/link_overlay_cli.py list --include-inactive
    python3 scripts/link_overlay_cli.py rebuild

    # Per-article overrides
    python3 scripts/link_overlay_cli.py override 42 "ML" --disable
    python3 scripts/link_overlay_cli.py override 42 "ML" --title "ML in Finance"
    python3 scripts/link_overlay_cli.py override 42 "ML" --clear

    # Render a markdown file as article 42
    python3 scripts/link_overlay_cli.py render 42 article.md
"""
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

try:
    import orjson

    def dump_json(obj: object) -> None:
        sys.stdout.buffer.write(orjson.dumps(obj, option=orjson.OPT_INDENT_2))
        sys.stdout.buffer.write(b"\n")
except ImportError:

    def dump_json(obj: object) -> None:
        json.dump(obj, sys.stdout, indent=2, default=str)
        print()


# Add src to path so the script runs from a checkout
_src = Path(__file__).resolve().parents[1] / "src"
if str(_src) not in sys.path:
    sys.path.insert(0, str(_src))

from linkoverlay.config import OverlayConfig  # noqa: E402
from linkoverlay.errors import DictionaryUnavailable  # noqa: E402
from linkoverlay.models import OverrideType  # noqa: E402
from linkoverlay.service import LinkOverlayService  # noqa: E402

log = logging.getLogger("link_overlay_cli")


def _term_row(svc: LinkOverlayService, term) -> dict[str, object]:
    return {
        "id": term.id,
        "canonical_term": term.canonical_term,
        "standalone_title": term.standalone_title,
        "is_active": term.is_active,
        "aliases": [a.alias_term for a in svc.dictionary.get_aliases(term.id)],
    }


# ---------------------------------------------------------------------------
# Subcommands
# ---------------------------------------------------------------------------

def cmd_add_term(svc: LinkOverlayService, args: argparse.Namespace) -> int:
    term = svc.dictionary.create_term(
        args.term, args.title, description=args.description, is_active=not args.inactive,
    )
    if args.alias:
        svc.dictionary.add_aliases(term.id, args.alias)
    dump_json(_term_row(svc, term))
    return 0


def cmd_add_alias(svc: LinkOverlayService, args: argparse.Namespace) -> int:
    svc.dictionary.add_aliases(args.term_id, args.aliases)
    aliases = svc.dictionary.get_aliases(args.term_id)
    dump_json({"term_id": args.term_id, "aliases": [a.alias_term for a in aliases]})
    return 0


def cmd_list(svc: LinkOverlayService, args: argparse.Namespace) -> int:
    terms = svc.dictionary.list_terms(active_only=not args.include_inactive)
    dump_json([_term_row(svc, t) for t in terms])
    print(f"{len(terms)} terms", file=sys.stderr)
    return 0


def cmd_rebuild(svc: LinkOverlayService, args: argparse.Namespace) -> int:  # noqa: ARG001
    snapshot = svc.snapshots.rebuild_snapshot()
    dump_json({"version": snapshot.version, "entries": len(snapshot.data)})
    return 0


def cmd_override(svc: LinkOverlayService, args: argparse.Namespace) -> int:
    if args.clear:
        removed = svc.overrides.remove_override(args.explanation_id, args.term)
        dump_json({"removed": removed})
        return 0 if removed else 1
    if args.disable:
        override = svc.overrides.set_override(
            args.explanation_id, args.term, OverrideType.DISABLED,
        )
    else:
        override = svc.overrides.set_override(
            args.explanation_id, args.term, OverrideType.CUSTOM_TITLE, args.title,
        )
    dump_json({
        "explanation_id": override.explanation_id,
        "term": override.term,
        "override_type": override.override_type.value,
        "custom_standalone_title": override.custom_standalone_title,
    })
    return 0


def cmd_render(svc: LinkOverlayService, args: argparse.Namespace) -> int:
    content = args.file.read_text(encoding="utf-8")
    if args.links:
        links = svc.resolve(args.explanation_id, content)
        dump_json([link.to_dict() for link in links])
        return 0
    sys.stdout.write(svc.render(args.explanation_id, content))
    if not content.endswith("\n"):
        sys.stdout.write("\n")
    return 0


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        description="Link overlay dictionary administration and render preview",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--db", type=Path, default=None,
        help="Path to links DuckDB (default: $LINK_OVERLAY_DB or data/links.duckdb)",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("add-term", help="Add a canonical term (idempotent)")
    p.add_argument("term")
    p.add_argument("title", help="Standalone title the term links to")
    p.add_argument("--description", default=None)
    p.add_argument("--alias", action="append", default=[], help="Alias (repeatable)")
    p.add_argument("--inactive", action="store_true", help="Create soft-disabled")
    p.set_defaults(func=cmd_add_term)

    p = sub.add_parser("add-alias", help="Attach aliases to an existing term")
    p.add_argument("term_id", type=int)
    p.add_argument("aliases", nargs="+")
    p.set_defaults(func=cmd_add_alias)

    p = sub.add_parser("list", help="List dictionary terms with aliases")
    p.add_argument("--include-inactive", action="store_true")
    p.set_defaults(func=cmd_list)

    p = sub.add_parser("rebuild", help="Force a snapshot rebuild")
    p.set_defaults(func=cmd_rebuild)

    p = sub.add_parser("override", help="Set or clear a per-article override")
    p.add_argument("explanation_id", type=int)
    p.add_argument("term")
    mode = p.add_mutually_exclusive_group(required=True)
    mode.add_argument("--disable", action="store_true", help="Never link this term")
    mode.add_argument("--title", default=None, help="Link to this title instead")
    mode.add_argument("--clear", action="store_true", help="Revert to the dictionary default")
    p.set_defaults(func=cmd_override)

    p = sub.add_parser("render", help="Render a markdown file with links applied")
    p.add_argument("explanation_id", type=int)
    p.add_argument("file", type=Path)
    p.add_argument("--links", action="store_true", help="Print resolved links as JSON instead")
    p.set_defaults(func=cmd_render)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )

    if args.command == "render" and not args.file.exists():
        print(f"Error: file not found: {args.file}", file=sys.stderr)
        return 1

    config = OverlayConfig.from_env()
    svc = LinkOverlayService.open(config, db_path=args.db)
    try:
        return args.func(svc, args)
    except (KeyError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2
    except DictionaryUnavailable as exc:
        log.error("Dictionary unavailable: %s", exc)
        return 3
    finally:
        svc.close()


if __name__ == "__main__":
    sys.exit(main())
