import argparse
import signal
import threading

from . import __version__
from .config import Settings
from .database import Organization, get_session_factory, init_database
from .errors import ContactCoreError, NotFoundError, ValidationError
from .logger import get_logger
from pipelines.backfill.full_rebuild import BatchRecomputeCoordinator
from pipelines.entity_resolution.matcher import MatchEngine
from pipelines.entity_resolution.merger import MergeEngine
from pipelines.scoring.rules import load_rule_set, save_rule_set
from pipelines.scoring.stats import score_stats


def _context(args: argparse.Namespace):
    settings = Settings.from_env(db_path=args.db)
    logger = get_logger(level=settings.log_level, log_dir=settings.log_dir)
    factory = get_session_factory(settings.db_path, timeout=settings.store_timeout)
    return settings, logger, factory


def _parse_overrides(pairs):
    overrides = {}
    for pair in pairs or []:
        if "=" not in pair:
            raise SystemExit(f"Override must look like field=value, got '{pair}'")
        name, value = pair.split("=", 1)
        overrides[name.strip()] = value.strip()
    return overrides


def cmd_init_db(args: argparse.Namespace) -> None:
    settings = Settings.from_env(db_path=args.db)
    init_database(settings.db_path)
    print(f"Database ready: {settings.db_path}")
    if args.org_name:
        session = get_session_factory(settings.db_path)()
        try:
            org = Organization(name=args.org_name)
            session.add(org)
            session.commit()
            print(f"Organization: {org.id}")
        finally:
            session.close()


def cmd_duplicates(args: argparse.Namespace) -> None:
    _, logger, factory = _context(args)
    session = factory()
    try:
        groups = MatchEngine(session, logger=logger).scan(args.org)
    finally:
        session.close()
    if not groups:
        print("No duplicates found.")
        return
    print(f"Found {len(groups)} potential duplicate groups:")
    for g in groups:
        print(f" - {g.id} [{g.match_type}/{g.match_field}] {', '.join(g.member_ids)}")


def cmd_merge(args: argparse.Namespace) -> None:
    _, logger, factory = _context(args)
    session = factory()
    try:
        groups = MatchEngine(session, logger=logger).scan(args.org)
    finally:
        session.close()

    group = next((g for g in groups if g.id == args.group), None)
    if group is None:
        raise NotFoundError(f"Duplicate group '{args.group}' not found in the current scan")

    result = MergeEngine(factory, logger=logger).merge(
        args.org, group, primary_id=args.primary, overrides=_parse_overrides(args.override)
    )
    moved = sum(result.references_moved.values())
    print(f"Merged {len(result.absorbed_ids)} contacts into {result.primary_id} ({moved} records moved)")


def cmd_merge_all(args: argparse.Namespace) -> None:
    _, logger, factory = _context(args)
    session = factory()
    try:
        groups = MatchEngine(session, logger=logger).scan(args.org)
    finally:
        session.close()
    if args.field:
        groups = [g for g in groups if g.match_field == args.field]

    report = MergeEngine(factory, logger=logger).merge_groups(args.org, groups)
    print(f"Merged {len(report.merged)} of {len(groups)} groups")
    for group_id, reason in report.failed.items():
        print(f" [failed] {group_id}: {reason}")
    logger.log_metrics_summary()
    if report.failed:
        raise SystemExit(2)


def cmd_rules(args: argparse.Namespace) -> None:
    editing = args.points is not None or args.enable or args.disable
    if editing and not args.rule:
        raise ValidationError("--points, --enable and --disable require --rule")
    _, _, factory = _context(args)
    session = factory()
    try:
        rule_set = load_rule_set(session, args.org)
        if args.reset:
            rule_set = save_rule_set(session, args.org, rule_set.reset_to_defaults())
        elif args.rule:
            if args.points is not None:
                rule_set = rule_set.with_points(args.rule, args.points)
            if args.enable or args.disable:
                rule_set = rule_set.with_enabled(args.rule, bool(args.enable))
            rule_set = save_rule_set(session, args.org, rule_set)
    finally:
        session.close()

    print(f"Scoring rules (version {rule_set.version}):")
    for rule in rule_set.rules:
        state = "on " if rule.enabled else "off"
        print(f" [{state}] {rule.id:<24} {rule.category:<10} {rule.points:>4} pts  {rule.name}")


def cmd_recompute(args: argparse.Namespace) -> None:
    settings, logger, factory = _context(args)
    coordinator = BatchRecomputeCoordinator(
        factory,
        batch_size=args.batch_size or settings.batch_size,
        task_timeout=settings.task_timeout,
        logger=logger,
    )
    cancel = threading.Event()
    # Ctrl-C lets the running batch finish and skips the rest
    previous = signal.signal(signal.SIGINT, lambda *_: cancel.set())
    try:
        summary = coordinator.run(args.org, cancel_event=cancel)
    finally:
        signal.signal(signal.SIGINT, previous)
    if summary.cancelled:
        print("Cancelled: remaining batches skipped")
    print(f"Scored {summary.succeeded}/{summary.total} contacts in {len(summary.batches)} batches")
    for contact_id, reason in summary.failures.items():
        print(f" [failed] {contact_id}: {reason}")
    logger.log_metrics_summary()
    if summary.failures:
        raise SystemExit(2)


def cmd_score(args: argparse.Namespace) -> None:
    settings, logger, factory = _context(args)
    coordinator = BatchRecomputeCoordinator(factory, task_timeout=settings.task_timeout, logger=logger)
    score = coordinator.recompute_contact(args.org, args.contact)
    print(f"Contact: {score.contact_id}")
    print(f"Total: {score.total_score} ({score.level})")
    for category, points in score.category_scores.items():
        print(f"  {category}: {points}")


def cmd_stats(args: argparse.Namespace) -> None:
    _, _, factory = _context(args)
    session = factory()
    try:
        stats = score_stats(session, args.org)
    finally:
        session.close()
    print(f"Contacts: {stats.total_contacts} ({stats.scored_contacts} scored)")
    print(f"Average score: {stats.avg_score}")
    for level, count in stats.distribution.items():
        pct = round(count / stats.total_contacts * 100) if stats.total_contacts else 0
        print(f"  {level:<9} {count:>6} ({pct}%)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="contactcore",
        description="Contact duplicate resolution and engagement scoring",
    )
    parser.add_argument("--version", action="store_true", help="Show version")
    parser.add_argument("--db", help="Path to SQLite database (or set CONTACTCORE_DB_PATH)")
    subparsers = parser.add_subparsers(dest="command")

    ini = subparsers.add_parser("init-db", help="Create the database tables")
    ini.add_argument("--org-name", help="Also create an organization with this name")
    ini.set_defaults(func=cmd_init_db)

    dup = subparsers.add_parser("duplicates", help="List duplicate contact groups")
    dup.add_argument("--org", required=True, help="Organization id")
    dup.set_defaults(func=cmd_duplicates)

    mrg = subparsers.add_parser("merge", help="Merge one duplicate group")
    mrg.add_argument("--org", required=True, help="Organization id")
    mrg.add_argument("--group", required=True, help="Group id from the 'duplicates' command")
    mrg.add_argument("--primary", help="Surviving contact id (default: earliest created)")
    mrg.add_argument("--override", action="append", help="Field pick, e.g. email=a@x.com (repeatable)")
    mrg.set_defaults(func=cmd_merge)

    mra = subparsers.add_parser("merge-all", help="Merge every duplicate group into its oldest contact")
    mra.add_argument("--org", required=True, help="Organization id")
    mra.add_argument("--field", choices=["phone", "email", "name"], help="Only merge groups matched on this field")
    mra.set_defaults(func=cmd_merge_all)

    rls = subparsers.add_parser("rules", help="Show or edit scoring rules")
    rls.add_argument("--org", required=True, help="Organization id")
    rls.add_argument("--rule", help="Rule id to edit")
    rls.add_argument("--points", type=int, help="New points for --rule")
    toggle = rls.add_mutually_exclusive_group()
    toggle.add_argument("--enable", action="store_true", help="Enable --rule")
    toggle.add_argument("--disable", action="store_true", help="Disable --rule")
    rls.add_argument("--reset", action="store_true", help="Restore the default rules")
    rls.set_defaults(func=cmd_rules)

    rec = subparsers.add_parser("recompute", help="Recompute engagement scores for all contacts")
    rec.add_argument("--org", required=True, help="Organization id")
    rec.add_argument("--batch-size", type=int, help="Contacts per batch (max 50)")
    rec.set_defaults(func=cmd_recompute)

    sco = subparsers.add_parser("score", help="Recompute one contact's score")
    sco.add_argument("--org", required=True, help="Organization id")
    sco.add_argument("--contact", required=True, help="Contact id")
    sco.set_defaults(func=cmd_score)

    sts = subparsers.add_parser("stats", help="Show score distribution")
    sts.add_argument("--org", required=True, help="Organization id")
    sts.set_defaults(func=cmd_stats)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        print(__version__)
        return

    if hasattr(args, "func"):
        try:
            args.func(args)
        except ContactCoreError as e:
            print(f"Error: {e}")
            raise SystemExit(1)
        return

    parser.print_help()


if __name__ == "__main__":
    main()
