"""Command-line interface for hactl."""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Any, List, Optional

from . import __version__, render
from .config import OUTPUT_FORMATS, AppConfig, load_config
from .core import Session
from .dispatch import describe_call
from .errors import AmbiguousMatchError, HactlError, NoMatchError, UtteranceSyntaxError
from .registry import CATEGORIES
from .resolver import ActionPlan, choice_utterance
from .services import parse_data

logger = logging.getLogger("hactl")

ORDINALS = {
    "first": 0,
    "one": 0,
    "second": 1,
    "two": 1,
    "third": 2,
    "three": 2,
    "fourth": 3,
    "four": 3,
    "fifth": 4,
    "five": 4,
}


def _configure_logging(verbose: int, quiet: bool) -> None:
    if quiet:
        logging.disable(logging.CRITICAL)
        return
    level = logging.WARNING
    if verbose == 1:
        level = logging.INFO
    elif verbose >= 2:
        level = logging.DEBUG
    logging.basicConfig(level=level, stream=sys.stderr, format="%(levelname)s %(name)s: %(message)s")


def _parse_affirmation(text: str) -> Optional[str]:
    normalized = " ".join(text.strip().lower().split())
    if normalized in {"y", "yes", "yep", "yeah", "sure", "ok", "okay", "please do"}:
        return "yes"
    if normalized in {"n", "no", "nope", "nah", "don't", "do not", "cancel"}:
        return "no"
    return None


def _interactive() -> bool:
    return sys.stdin.isatty() and sys.stderr.isatty()


def _prompt(question: str) -> str:
    sys.stderr.write(question)
    sys.stderr.flush()
    return sys.stdin.readline()


def _confirm_bulk(plan: ActionPlan) -> bool:
    if not _interactive():
        sys.stderr.write(
            f"refusing to act on {len(plan.steps)} entities without confirmation; re-run with --yes\n"
        )
        return False
    for step in plan.steps[:10]:
        sys.stderr.write(f"  - {step.name or step.entity_id} ({step.entity_id})\n")
    if len(plan.steps) > 10:
        sys.stderr.write(f"  ... and {len(plan.steps) - 10} more\n")
    question = f"{plan.intent.action.value.replace('_', ' ')} {len(plan.steps)} entities? [y/N] "
    while True:
        line = _prompt(question)
        if not line:
            return False
        answer = _parse_affirmation(line)
        if answer is not None:
            return answer == "yes"


def _pick_candidate(exc: AmbiguousMatchError) -> Optional[str]:
    sys.stderr.write(f"'{exc.phrase}' matches several entities:\n")
    for idx, candidate in enumerate(exc.candidates, start=1):
        sys.stderr.write(f"  {idx}. {candidate.get('name')} ({candidate.get('id')})\n")
    answer = _prompt("Which one? [number, or empty to cancel] ").strip().lower()
    if not answer or answer in {"cancel", "never mind", "nevermind", "stop", "no"}:
        return None
    index = ORDINALS.get(answer)
    if index is None and answer.isdigit():
        index = int(answer) - 1
    if index is None:
        for idx, candidate in enumerate(exc.candidates):
            if answer in (str(candidate.get("id", "")).lower(), str(candidate.get("name", "")).lower()):
                index = idx
                break
    if index is None or not 0 <= index < len(exc.candidates):
        return None
    return str(exc.candidates[index]["id"])


def _load(args: argparse.Namespace) -> AppConfig:
    cfg = load_config(
        path=args.config,
        server=args.server,
        token=args.token,
        timeout=args.timeout,
        insecure=args.insecure,
    )
    if args.output:
        cfg.output_format = args.output
    return cfg


def _session(args: argparse.Namespace, confirm: Any = None) -> Session:
    return Session(_load(args), confirm=confirm)


def _report_error(exc: HactlError, fmt: str) -> None:
    if fmt in ("json", "yaml"):
        render.emit(exc.to_dict(), fmt)
        return
    sys.stderr.write(f"error: {exc.message}\n")
    if isinstance(exc, UtteranceSyntaxError):
        start, end = exc.span
        sys.stderr.write(f"  {exc.text}\n  {' ' * start}{'^' * max(1, end - start)}\n")
    elif isinstance(exc, AmbiguousMatchError):
        sys.stderr.write("candidates:\n")
        for candidate in exc.candidates:
            sys.stderr.write(f"  {candidate.get('id')}  {candidate.get('name')}\n")
    elif isinstance(exc, NoMatchError) and exc.suggestions:
        sys.stderr.write("did you mean:\n")
        for candidate in exc.suggestions:
            sys.stderr.write(f"  {candidate.get('id')}  {candidate.get('name')}\n")


def _plan_text(plan: ActionPlan) -> str:
    if plan.dry_run:
        lines = [f"dry run ({plan.match_kind}, score {plan.score:.2f}):"]
        lines += [f"  {describe_call(s.entity_id, s.action, s.parameter)}" for s in plan.steps]
        return "\n".join(lines)
    if plan.outcome == "cancelled":
        return "cancelled"
    verb = "done" if plan.outcome == "ok" else "resolved"
    return f"{verb}: {plan.summary()}"


def _run_utterance(session: Session, args: argparse.Namespace, utterance: str) -> None:
    fmt = session.config.output_format
    while True:
        try:
            plan = session.resolve(utterance, exact_only=args.exact, dry_run=args.dry_run)
            break
        except AmbiguousMatchError as exc:
            if fmt != "text" or not _interactive() or exc.intent is None:
                raise
            chosen = _pick_candidate(exc)
            retry = choice_utterance(exc.intent, exc.phrase, chosen) if chosen else None
            if retry is None or retry == utterance:
                raise
            # the chosen id matches by identifier; other phrases keep their usual matching
            utterance = retry
            logger.info("resubmitting as %r", utterance)
    render.emit(plan, fmt, text=_plan_text)
    if not args.no_refresh:
        session.refresh_stale()
    if plan.outcome == "cancelled":
        sys.exit(1)


def cmd_do(args: argparse.Namespace) -> None:
    cfg = _load(args)
    if not args.dry_run:
        cfg.require_connection()
    session = Session(cfg, confirm=None if args.yes else _confirm_bulk)
    _run_utterance(session, args, " ".join(args.words))


def cmd_cache_status(args: argparse.Namespace) -> None:
    session = _session(args)
    rows = session.cache_status()
    render.emit(
        rows,
        session.config.output_format,
        text=lambda data: render.table(
            data, ["category", "exists", "count", "age_secs", "expires_in_secs", "stale"]
        ),
    )


def cmd_cache_refresh(args: argparse.Namespace) -> None:
    cfg = _load(args)
    cfg.require_connection()
    session = Session(cfg)
    counts = session.cache_refresh(args.category)
    render.emit(
        counts,
        cfg.output_format,
        text=lambda data: "\n".join(f"{name}: {count} entries" for name, count in data.items()),
    )


def cmd_cache_clear(args: argparse.Namespace) -> None:
    session = _session(args)
    removed = session.cache_clear(args.category)
    render.emit(
        {"removed": removed},
        session.config.output_format,
        text=lambda data: f"removed: {', '.join(data['removed']) or 'nothing'}",
    )


def cmd_cache_path(args: argparse.Namespace) -> None:
    cfg = _load(args)
    print(cfg.cache_dir)


def _history_text(entries: List[dict]) -> str:
    if not entries:
        return "(no history)"
    lines = []
    for entry in entries:
        targets = ", ".join(entry.get("targets") or []) or "-"
        status = entry.get("outcome", "?")
        if entry.get("error_kind"):
            status = f"{status}:{entry['error_kind']}"
        lines.append(
            f"{str(entry.get('ts', ''))[:19]}  {status:<22} {entry.get('match_kind') or '-':<9} "
            f"{entry.get('utterance', '')!r} -> {targets}"
        )
    return "\n".join(lines)


def cmd_history_list(args: argparse.Namespace) -> None:
    session = _session(args)
    entries = session.get_history(
        limit=args.limit, search=args.search, outcome=args.outcome, match_kind=args.kind
    )
    render.emit(entries, session.config.output_format, text=_history_text)


def cmd_history_stats(args: argparse.Namespace) -> None:
    session = _session(args)
    stats = session.history.stats(top=args.top)

    def _text(data: dict) -> str:
        lines = [
            f"commands: {data['total']}  success rate: {data['success_rate'] * 100:.1f}%",
            "match kinds: " + (", ".join(f"{k}={v}" for k, v in data["by_match_kind"].items()) or "-"),
            "errors: " + (", ".join(f"{k}={v}" for k, v in data["by_error"].items()) or "-"),
        ]
        for item in data["top_targets"]:
            lines.append(f"  {item['count']:>4}  {item['id']}")
        return "\n".join(lines)

    render.emit(stats, session.config.output_format, text=_text)


def cmd_history_context(args: argparse.Namespace) -> None:
    session = _session(args)
    record = session.get_context()

    def _text(data: Any) -> str:
        if data is None:
            return "no active context"
        return (
            f"{', '.join(data.entity_ids)} (last action {data.action}, {data.match_kind}, "
            f"{session.context.ttl - data.age(session.context.clock()):.0f}s left)"
        )

    render.emit(record, session.config.output_format, text=_text)


def cmd_history_clear_context(args: argparse.Namespace) -> None:
    session = _session(args)
    cleared = session.clear_context()
    print("context cleared" if cleared else "no context stored")


def cmd_history_compact(args: argparse.Namespace) -> None:
    session = _session(args)
    removed = session.compact_history(args.keep)
    print(f"removed {removed} entries")


def cmd_history_clear(args: argparse.Namespace) -> None:
    session = _session(args)
    cleared = session.history.clear()
    print("history cleared" if cleared else "no history stored")


def cmd_history_again(args: argparse.Namespace) -> None:
    cfg = _load(args)
    if not args.dry_run:
        cfg.require_connection()
    session = Session(cfg, confirm=None if args.yes else _confirm_bulk)
    last = next((e for e in session.history.entries() if e.get("kind", "command") == "command"), None)
    if not last or not last.get("utterance"):
        sys.stderr.write("no previous command to repeat\n")
        sys.exit(1)
    args.exact = False
    _run_utterance(session, args, str(last["utterance"]))


def cmd_history_path(args: argparse.Namespace) -> None:
    session = _session(args)
    print(session.history.path)


def cmd_entity_get(args: argparse.Namespace) -> None:
    cfg = _load(args)
    cfg.require_connection()
    session = Session(cfg)
    state = session.entity_state(" ".join(args.words))

    def _text(data: dict) -> str:
        name = (data.get("attributes") or {}).get("friendly_name", "")
        return f"{data.get('entity_id')} ({name}): {data.get('state')}"

    render.emit(state, cfg.output_format, text=_text)


def cmd_service_call(args: argparse.Namespace) -> None:
    try:
        data = parse_data(args.data)
    except ValueError as exc:
        sys.stderr.write(f"error: {exc}\n")
        sys.exit(2)
    cfg = _load(args)
    if not args.dry_run:
        cfg.require_connection()
    session = Session(cfg)
    result = session.call_service(args.domain, args.service, " ".join(args.words), data, dry_run=args.dry_run)

    def _text(row: dict) -> str:
        verb = "dry run" if row["outcome"] == "dry_run" else "done"
        target = f" {row['entity_id']}" if row.get("entity_id") else ""
        return f"{verb} ({row['match_kind']}, score {row['score']:.2f}): {row['service']}{target}"

    render.emit(result, cfg.output_format, text=_text)


def cmd_config_show(args: argparse.Namespace) -> None:
    cfg = _load(args)
    render.emit(cfg.to_dict(redact=True), "json" if cfg.output_format == "json" else "yaml")


def _add_do_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--dry-run", action="store_true", help="resolve only, do not call the hub")
    parser.add_argument("-y", "--yes", action="store_true", help="skip bulk confirmation")
    parser.add_argument("--no-refresh", action="store_true", help="skip refreshing stale caches afterwards")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="hactl", description="Control Home Assistant in plain words.")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-c", "--config", default=None, help="path to config.yaml")
    parser.add_argument("-s", "--server", default=None, help="Home Assistant URL")
    parser.add_argument("-t", "--token", default=None, help="long-lived access token")
    parser.add_argument("--timeout", type=float, default=None)
    parser.add_argument("-k", "--insecure", action="store_true", help="skip TLS verification")
    parser.add_argument("-o", "--output", choices=OUTPUT_FORMATS, default=None)
    parser.add_argument("-v", "--verbose", action="count", default=0)
    parser.add_argument("-q", "--quiet", action="store_true")
    sub = parser.add_subparsers(dest="cmd", required=True)

    do = sub.add_parser("do", help="run a natural-language command")
    do.add_argument("words", nargs="+")
    do.add_argument("--exact", action="store_true", help="accept exact matches only")
    _add_do_flags(do)
    do.set_defaults(func=cmd_do)

    cache = sub.add_parser("cache")
    cache_sub = cache.add_subparsers(dest="subcmd", required=True)
    category_choices = ["all"] + list(CATEGORIES)

    cache_status = cache_sub.add_parser("status")
    cache_status.set_defaults(func=cmd_cache_status)

    cache_refresh = cache_sub.add_parser("refresh")
    cache_refresh.add_argument("category", nargs="?", default="all", choices=category_choices)
    cache_refresh.set_defaults(func=cmd_cache_refresh)

    cache_clear = cache_sub.add_parser("clear")
    cache_clear.add_argument("category", nargs="?", default="all", choices=category_choices)
    cache_clear.set_defaults(func=cmd_cache_clear)

    cache_path = cache_sub.add_parser("path")
    cache_path.set_defaults(func=cmd_cache_path)

    history = sub.add_parser("history")
    history_sub = history.add_subparsers(dest="subcmd", required=True)

    history_list = history_sub.add_parser("list")
    history_list.add_argument("-n", "--limit", type=int, default=20)
    history_list.add_argument("--search", default=None)
    history_list.add_argument("--outcome", default=None)
    history_list.add_argument("--kind", default=None, help="match kind filter")
    history_list.set_defaults(func=cmd_history_list)

    history_stats = history_sub.add_parser("stats")
    history_stats.add_argument("--top", type=int, default=5)
    history_stats.set_defaults(func=cmd_history_stats)

    history_context = history_sub.add_parser("context")
    history_context.set_defaults(func=cmd_history_context)

    history_clear_context = history_sub.add_parser("clear-context")
    history_clear_context.set_defaults(func=cmd_history_clear_context)

    history_compact = history_sub.add_parser("compact")
    history_compact.add_argument("--keep", type=int, default=None)
    history_compact.set_defaults(func=cmd_history_compact)

    history_clear = history_sub.add_parser("clear")
    history_clear.set_defaults(func=cmd_history_clear)

    history_again = history_sub.add_parser("again", help="repeat the last command")
    _add_do_flags(history_again)
    history_again.set_defaults(func=cmd_history_again)

    history_path = history_sub.add_parser("path")
    history_path.set_defaults(func=cmd_history_path)

    entity = sub.add_parser("entity")
    entity_sub = entity.add_subparsers(dest="subcmd", required=True)
    entity_get = entity_sub.add_parser("get", help="live state of an entity")
    entity_get.add_argument("words", nargs="+")
    entity_get.set_defaults(func=cmd_entity_get)

    service = sub.add_parser("service")
    service_sub = service.add_subparsers(dest="subcmd", required=True)
    service_call = service_sub.add_parser("call", help="call DOMAIN SERVICE on an optional target")
    service_call.add_argument("domain")
    service_call.add_argument("service")
    service_call.add_argument("words", nargs="*", help="target entity")
    service_call.add_argument(
        "-d", "--data", action="append", default=[], metavar="KEY=VALUE", help="service data, repeatable"
    )
    service_call.add_argument("--dry-run", action="store_true", help="resolve only, do not call the hub")
    service_call.set_defaults(func=cmd_service_call)

    config = sub.add_parser("config")
    config_sub = config.add_subparsers(dest="subcmd", required=True)
    config_show = config_sub.add_parser("show")
    config_show.set_defaults(func=cmd_config_show)
    return parser


def main(argv: Any = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose, args.quiet)
    try:
        args.func(args)
    except HactlError as exc:
        _report_error(exc, args.output or "text")
        sys.exit(exc.exit_code)
    except KeyboardInterrupt:
        sys.stderr.write("interrupted\n")
        sys.exit(130)


if __name__ == "__main__":
    main()
