from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path
from typing import Callable, List, Optional

from .checkpoint import CheckpointWriter, load_checkpoint
from .completion_client import ChatCompletionClient, CompletionService, validate_settings
from .config import DEFAULT_CONFIG_PATH, TranslatorSettings, load_config
from .conversation import ConversationWindow
from .errors import PersistenceError
from .models import RunReport, RunStatus
from .pipeline import BatchIterator, RetryPolicy
from .prompts import build_system_prompt
from .subtitles import FORMAT_ASS, SubtitleDocument, format_for_path

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="subtrans",
        description="Translate subtitles through a chat-completion service, one conversation per file.",
    )
    parser.add_argument("--config", type=Path, default=None, help="Path to a YAML config file.")
    parser.add_argument("--log-level", default=None, help="Logging level override.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    translate_parser = subparsers.add_parser("translate", help="Run the translation pipeline on a subtitle file.")
    translate_parser.add_argument("input", type=Path, help="Source .srt or .ass file.")
    translate_parser.add_argument("-o", "--output", type=Path, help="Output file; its extension selects the format.")
    translate_parser.add_argument(
        "--batch",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Send cues as JSON arrays instead of one at a time.",
    )
    translate_parser.add_argument("--batch-size", type=int, default=None, help="Cues per batch request.")
    translate_parser.add_argument("--model", default=None, help="Override the model identifier.")
    translate_parser.add_argument("--base-url", default=None, help="Override the service base URL.")
    translate_parser.add_argument(
        "--romaji",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Include romaji lines in the output.",
    )
    translate_parser.add_argument("--checkpoint-dir", type=Path, default=None, help="Where checkpoint files go.")

    merge_parser = subparsers.add_parser("merge", help="Write translations from a JSON array into a subtitle file.")
    merge_parser.add_argument("input", type=Path, help="Original subtitle file.")
    merge_parser.add_argument("translations", type=Path, help="JSON array of strings (e.g. a checkpoint).")
    merge_parser.add_argument("-o", "--output", type=Path, help="Output file; its extension selects the format.")

    convert_parser = subparsers.add_parser("convert", help="Transcode a subtitle file between SRT and ASS.")
    convert_parser.add_argument("input", type=Path, help="Subtitle file to convert.")
    convert_parser.add_argument("-o", "--output", type=Path, help="Output path (defaults to the input name).")
    convert_parser.add_argument("--to", choices=["srt", "ass"], default=FORMAT_ASS, help="Target format.")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        settings = _load_settings(args.config)
    except (FileNotFoundError, ValueError) as exc:
        print(f"[ERROR] {exc}", file=sys.stderr)
        return 2
    configure_logging(args.log_level or settings.log_level)
    return run_cli(args, settings)


def run_cli(args: argparse.Namespace, settings: TranslatorSettings) -> int:
    handlers = {
        "translate": _run_translate_command,
        "merge": _run_merge_command,
        "convert": _run_convert_command,
    }
    handler = handlers.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 2
    try:
        return handler(args, settings)
    except FileNotFoundError as exc:
        print(f"[ERROR] {exc}", file=sys.stderr)
        return 2
    except ValueError as exc:
        print(f"[ERROR] {exc}", file=sys.stderr)
        return 2
    except PersistenceError as exc:
        logger.error("%s", exc)
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        return 130


def _load_settings(path: Optional[Path]) -> TranslatorSettings:
    if path is not None and not path.exists():
        raise FileNotFoundError(f"Config file '{path}' not found.")
    return load_config(path or DEFAULT_CONFIG_PATH)


def _run_translate_command(args: argparse.Namespace, settings: TranslatorSettings) -> int:
    if args.batch is not None:
        settings.batch_mode = args.batch
    if args.batch_size is not None:
        settings.batch_size = args.batch_size
    if args.model is not None:
        settings.model = args.model
    if args.base_url is not None:
        settings.base_url = args.base_url
    if args.romaji is not None:
        settings.romaji = args.romaji
    if args.checkpoint_dir is not None:
        settings.checkpoint_dir = str(args.checkpoint_dir)

    ok, message = validate_settings(settings.completion_settings())
    if not ok:
        raise ValueError(message)
    client = ChatCompletionClient(settings.completion_settings())
    report, output_path = translate_file(args.input, settings, client, output=args.output)
    if report.status is RunStatus.ABORTED:
        print(
            f"Translation aborted after {len(report.translations)} cues: {report.error}",
            file=sys.stderr,
        )
        if report.checkpoint_path:
            print(f"Partial results saved to {report.checkpoint_path}", file=sys.stderr)
        return 1
    if not report.succeeded:
        return 1
    print(output_path)
    return 0


def translate_file(
    input_path: Path,
    settings: TranslatorSettings,
    client: CompletionService,
    *,
    output: Optional[Path] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> tuple[RunReport, Optional[Path]]:
    """Translate one subtitle file; the output is written only when every cue succeeded."""
    input_path = Path(input_path).expanduser()
    if not input_path.exists():
        raise FileNotFoundError(f"Subtitle file '{input_path}' not found.")
    document = SubtitleDocument.load(input_path)
    window = ConversationWindow(
        build_system_prompt(romaji=settings.romaji, batch_mode=settings.batch_mode),
        max_turns=settings.max_turns,
    )
    iterator = BatchIterator(
        document.texts,
        client,
        window,
        CheckpointWriter(Path(settings.checkpoint_dir)),
        batch_mode=settings.batch_mode,
        batch_size=settings.batch_size,
        policy=RetryPolicy(settings.retry_threshold),
        pacing_delay=settings.pacing_delay,
        sleep=sleep,
    )
    report = iterator.run()
    if report.status is not RunStatus.DONE:
        return report, None
    target = resolve_output_path(input_path, output, settings.output_format)
    document.replace_texts(report.translations).save(target)
    return report, target


def _run_merge_command(args: argparse.Namespace, settings: TranslatorSettings) -> int:
    if not args.input.exists():
        raise FileNotFoundError(f"Subtitle file '{args.input}' not found.")
    document = SubtitleDocument.load(args.input)
    translations = load_checkpoint(args.translations)
    if len(translations) < len(document):
        logger.warning(
            "Only %d of %d cues have translations; the rest keep their original text.",
            len(translations),
            len(document),
        )
    target = resolve_output_path(args.input, args.output, settings.output_format)
    document.replace_texts(translations).save(target)
    print(target)
    return 0


def _run_convert_command(args: argparse.Namespace, settings: TranslatorSettings) -> int:
    if not args.input.exists():
        raise FileNotFoundError(f"Subtitle file '{args.input}' not found.")
    target = args.output or args.input.with_suffix(f".{args.to}")
    if target.resolve() == args.input.resolve():
        raise ValueError(f"'{args.input}' is already in {args.to} format.")
    SubtitleDocument.load(args.input).save(target)
    print(target)
    return 0


def resolve_output_path(input_path: Path, output: Optional[Path], preferred_format: Optional[str]) -> Path:
    if output is not None:
        format_for_path(output)
        return output
    fmt = preferred_format or format_for_path(input_path)
    target = input_path.with_name(f"{input_path.stem}.translated.{fmt}")
    format_for_path(target)
    return target
