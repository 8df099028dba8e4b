import argparse
import asyncio
import logging
import sys
from pathlib import Path

import pysrt
from tqdm.asyncio import tqdm

from cancellation import CancellationToken
from exceptions import OperationCancelled, PipelineError, SubtitlePipelineError
from language import LANGUAGE_NAMES, get_language_name
from llm_client import create_client
from log_setup import setup_logging
from pipeline import BilingualResult, TranslationPipeline
from settings import TranslatorConfig, load_config, load_env_file, validate_config
from transcript import Fragment
from translator import FAILED_PREFIX, TranslationContext

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────
#  SRT input / output
# ─────────────────────────────────────────────────────────
def read_srt(path: Path) -> list[Fragment]:
    subs = pysrt.open(str(path), encoding="utf-8")
    fragments: list[Fragment] = []
    for i, item in enumerate(subs):
        try:
            fragments.append(Fragment(i + 1, item.start.ordinal, item.end.ordinal, " ".join(item.text.split())))
        except ValueError as e:
            raise PipelineError(f"{path.name}: cue {item.index} is malformed: {e}") from e
    return fragments


def _to_subrip(fragments: list[Fragment], texts: list[str]) -> pysrt.SubRipFile:
    subs = pysrt.SubRipFile()
    for i, (frag, text) in enumerate(zip(fragments, texts), start=1):
        subs.append(pysrt.SubRipItem(
            index=i,
            start=pysrt.SubRipTime.from_ordinal(frag.start_time),
            end=pysrt.SubRipTime.from_ordinal(frag.end_time),
            text=text,
        ))
    return subs


def write_outputs(
    result: BilingualResult,
    prefix: Path,
    source_lang: str,
    target_lang: str,
    bilingual: bool = False,
) -> list[Path]:
    outputs = {
        prefix.with_name(f"{prefix.name}.{source_lang}.srt"): [f.text for f in result.source],
        prefix.with_name(f"{prefix.name}.{target_lang}.srt"): [f.text for f in result.target],
    }
    if bilingual:
        outputs[prefix.with_name(f"{prefix.name}.bilingual.srt")] = [
            f"{tgt.text}\n{src.text}" for src, tgt in zip(result.source, result.target)
        ]

    for path, texts in outputs.items():
        _to_subrip(result.source, texts).save(str(path), encoding="utf-8")
    return list(outputs)


# ─────────────────────────────────────────────────────────
#  Commands
# ─────────────────────────────────────────────────────────
async def _translate_async(args: argparse.Namespace, config: TranslatorConfig) -> int:
    input_path = Path(args.input)
    fragments = read_srt(input_path)
    if not fragments:
        print(f"  …{input_path.name} has no subtitles, nothing to do.")
        return 1

    split_client = create_client(config, "split")
    translation_client = create_client(config, "translation")
    summary_client = create_client(config, "summary") if config.enable_summary else None
    pipeline = TranslationPipeline(config, split_client, translation_client, summary_client)

    bar = tqdm(total=1, desc="Starting", unit="sent")

    def on_progress(phase: str, current: int, total: int) -> None:
        bar.set_description(phase.capitalize())
        bar.total = max(total, 1)
        bar.n = current
        bar.refresh()

    def on_partial(partial: BilingualResult, is_first: bool) -> None:
        if is_first and partial.target:
            bar.write(f"  First subtitles: {partial.target[0].text}")

    title = args.title or input_path.stem.replace("_", " ")
    cancel_token = CancellationToken()
    try:
        result = await pipeline.run(
            fragments,
            on_partial=on_partial,
            on_progress=on_progress,
            context=TranslationContext(title=title),
            cancel_token=cancel_token,
        )
    except asyncio.CancelledError:
        cancel_token.cancel("interrupted")
        raise
    finally:
        bar.close()
        for client in (split_client, translation_client, summary_client):
            if client is not None:
                await client.aclose()

    prefix = Path(args.output) if args.output else input_path.with_suffix("")
    written = write_outputs(result, prefix, args.source_lang, config.target_language, args.bilingual)
    failed = sum(1 for f in result.target if f.text.startswith(FAILED_PREFIX))

    print(f"\n✔ {len(result)} subtitles written ({failed} untranslated):")
    for path in written:
        print(f"    {path}")
    return 0


async def _test_api_async(config: TranslatorConfig) -> int:
    client = create_client(config, "translation")
    try:
        reply = await client.complete("You are a connectivity check.", "Reply with the single word OK.", timeout=30.0)
    finally:
        await client.aclose()
    print(f"✔ {config.base_url} ({config.translation_model}) answered: {reply.strip()[:80]}")
    return 0


def cmd_translate(args: argparse.Namespace) -> int:
    config = load_config(
        target_language=args.target,
        max_rpm=args.rpm,
        thread_num=args.threads,
        enable_summary=True if args.summary else None,
    )
    problems = validate_config(config)
    if problems:
        print("Configuration errors:")
        for problem in problems:
            print(f"  - {problem}")
        return 1

    print(f"\n▶ Translating {args.input} into {get_language_name(config.target_language)}")
    return asyncio.run(_translate_async(args, config))


def cmd_languages(args: argparse.Namespace) -> int:
    for code, name in LANGUAGE_NAMES.items():
        print(f"  {code:<12} {name}")
    return 0


def cmd_test_api(args: argparse.Namespace) -> int:
    config = load_config()
    problems = validate_config(config)
    if problems:
        print("Configuration errors:")
        for problem in problems:
            print(f"  - {problem}")
        return 1
    return asyncio.run(_test_api_async(config))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="subtitle-reseg",
        description="Resegment speech-recognition subtitles with an LLM and translate them into a bilingual track.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    tr = sub.add_parser("translate", help="Resegment and translate an SRT file.")
    tr.add_argument("input", help="Path to the source SRT file.")
    tr.add_argument("-o", "--output", help="Output path prefix. Default: the input path without extension.")
    tr.add_argument("-t", "--target", help="Target language code. Default: TARGET_LANGUAGE or zh.")
    tr.add_argument("-s", "--source-lang", default="en", help="Source language code used in output names. Default: en.")
    tr.add_argument("--title", help="Video title passed to the translator as context.")
    tr.add_argument("--summary", action="store_true", help="Summarize the content first and use it as context.")
    tr.add_argument("--bilingual", action="store_true", help="Also write a two-line bilingual SRT.")
    tr.add_argument("--rpm", type=int, help="Max requests per minute to the API.")
    tr.add_argument("--threads", type=int, help="Max number of batches processed concurrently.")
    tr.add_argument("--debug", action="store_true", help="Verbose logging.")
    tr.set_defaults(func=cmd_translate)

    lang = sub.add_parser("languages", help="List supported target languages.")
    lang.set_defaults(func=cmd_languages)

    test = sub.add_parser("test-api", help="Check that the configured API answers.")
    test.add_argument("--debug", action="store_true", help="Verbose logging.")
    test.set_defaults(func=cmd_test_api)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    load_env_file()
    if args.command != "languages":
        setup_logging(logging.DEBUG if args.debug else logging.INFO)

    try:
        return args.func(args)
    except KeyboardInterrupt:
        print("\nInterrupted.")
        return 130
    except OperationCancelled as e:
        print(f"\nCancelled: {e}")
        return 130
    except SubtitlePipelineError as e:
        logger.error(f"{type(e).__name__}: {e}")
        print(f"\n✘ {type(e).__name__}: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
