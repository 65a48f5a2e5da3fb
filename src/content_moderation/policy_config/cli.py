"""CLI for compiling and validating local policy documents."""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
import sys

from content_moderation.logging_utils import configure_logging
from content_moderation.resources.resources import ResourceCache
from content_moderation.settings import EngineSettings, EngineSettingsError, load_engine_settings

from .builder import StructuredGraphBuilder
from .contracts import graph_as_dict
from .errors import ConfigParseError, PolicyConfigError
from .fragments import FORMAT_JSON, FORMAT_YAML, parse_fragment_text


logger = logging.getLogger("content_moderation.policy_config.cli")


def load_document(path: Path) -> dict:
    text = Path(path).read_text(encoding="utf-8")
    hint = FORMAT_YAML if path.suffix.lower() in {".yaml", ".yml"} else FORMAT_JSON
    data, _ = parse_fragment_text(text, format_hint=hint)
    if not isinstance(data, dict):
        raise ConfigParseError("policy document must be an object")
    return data


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Moderation policy document tools")
    parser.add_argument("--log-level", default="WARNING")
    parser.add_argument("--log-file", type=Path, default=None, help="Also append log records to this file")
    subparsers = parser.add_subparsers(dest="command", required=True)

    compile_parser = subparsers.add_parser("compile", help="Print the structured graph as JSON")
    compile_parser.add_argument("document", type=Path)
    compile_parser.add_argument("--settings", type=Path, default=None, help="Engine settings profile YAML")
    compile_parser.add_argument("--community", default="local", help="Default community for wiki: references")

    validate_parser = subparsers.add_parser("validate", help="Report whether a document compiles")
    validate_parser.add_argument("document", type=Path)
    validate_parser.add_argument("--settings", type=Path, default=None, help="Engine settings profile YAML")
    validate_parser.add_argument("--community", default="local", help="Default community for wiki: references")

    args = parser.parse_args(argv)
    configure_logging(getattr(logging, str(args.log_level).upper(), logging.WARNING), args.log_file)

    try:
        settings = load_engine_settings(args.settings) if args.settings is not None else EngineSettings()
        resources = ResourceCache.from_settings(settings, args.community)
        document = load_document(args.document)
        runs = StructuredGraphBuilder(resources.fetch_fragment).build(
            document,
            filter_defaults=settings.filter_defaults,
            post_check_defaults=settings.post_check_defaults,
        )
    except (PolicyConfigError, EngineSettingsError) as exc:
        logger.debug("compile failed document=%s", args.document, exc_info=True)
        print(f"ERROR {type(exc).__name__}: {exc}", file=sys.stderr)
        return 1

    if args.command == "validate":
        print("OK")
    else:
        print(json.dumps(graph_as_dict(runs), sort_keys=True, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
