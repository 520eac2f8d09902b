import argparse
import json
from pathlib import Path
from typing import Optional, Tuple

from .env import load_env

from . import __version__
from .access import Actor, resolve_actor
from .config import Settings
from .database import ROLES, init_database
from .errors import WorkflowError
from .moderation import ModerationService
from .saga import CreationSaga
from .store import RelationStore


def load_json(path_arg: str) -> dict:
    input_path = Path(path_arg)
    if not input_path.exists():
        raise SystemExit(f"Input file not found: {input_path}")
    with input_path.open("r", encoding="utf-8") as f:
        return json.load(f)


def settings_from_args(args: argparse.Namespace) -> Settings:
    settings = Settings.from_env()
    if args.db:
        settings.db_path = Path(args.db)
    return settings


def open_store(args: argparse.Namespace, settings: Optional[Settings] = None) -> RelationStore:
    settings = settings or settings_from_args(args)
    init_database(settings.db_path)
    return RelationStore.from_settings(settings)


def open_services(args: argparse.Namespace) -> Tuple[Actor, ModerationService, CreationSaga]:
    """Resolve --actor and build the engine services for one command."""
    settings = settings_from_args(args)
    store = open_store(args, settings)
    actor = resolve_actor(store, args.actor)
    moderation = ModerationService(store, restricted_category=settings.restricted_category)
    saga = CreationSaga(store, restricted_category=settings.restricted_category)
    return actor, moderation, saga


def print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str))


def cmd_init_db(args: argparse.Namespace) -> None:
    store = open_store(args)
    print(f"Initialized database: {store.db_path}")


def cmd_add_user(args: argparse.Namespace) -> None:
    store = open_store(args)
    user = store.insert_user({"pseudonym": args.pseudonym, "role": args.role})
    print(f"User: {user['id']} ({user['role']})")


def cmd_serve(args: argparse.Namespace) -> None:
    from .api import create_app

    app = create_app(settings=settings_from_args(args))
    app.run(host=args.host, port=args.port, debug=args.debug)


def cmd_create_worker(args: argparse.Namespace) -> None:
    actor, _, saga = open_services(args)
    worker = saga.create_worker(load_json(args.input), actor)
    print(f"Worker: {worker['id']}")
    print(f"Status: {worker['status']}")


def cmd_create_venue(args: argparse.Namespace) -> None:
    actor, _, saga = open_services(args)
    venue = saga.create_venue(load_json(args.input), actor)
    print(f"Venue: {venue['id']}")
    print(f"Status: {venue['status']}")


def cmd_propose(args: argparse.Namespace) -> None:
    actor, service, _ = open_services(args)
    proposal, auto_approved = service.submit_proposal(
        actor, args.item_type, args.item_id, load_json(args.input)
    )
    print(f"Proposal: {proposal['id'] if proposal else '(audit record not saved)'}")
    print(f"Auto-approved: {auto_approved}")


def cmd_review(args: argparse.Namespace) -> None:
    actor, service, _ = open_services(args)
    if args.decision == "approve":
        proposal = service.approve(args.proposal_id, actor, args.notes)
    else:
        proposal = service.reject(args.proposal_id, actor, args.notes)
    print(f"Proposal {proposal['id']}: {proposal['status']}")


def cmd_list_proposals(args: argparse.Namespace) -> None:
    actor, service, _ = open_services(args)
    proposals = service.list_proposals(actor, status=args.status, item_type=args.item_type)
    if not proposals:
        print("No proposals.")
        return
    print(f"Found {len(proposals)} proposals:\n")
    for p in proposals:
        print(f"ID: {p['id']}")
        print(f"  Item: {p['item_type']} {p['item_id']}")
        print(f"  Status: {p['status']}")
        print(f"  Proposed by: {p['proposed_by']}")
        print(f"  Changes: {json.dumps(p['proposed_changes'], default=str)}")
        print()


def cmd_review_queue(args: argparse.Namespace) -> None:
    actor, service, _ = open_services(args)

    if args.approve or args.reject:
        entry_id = args.approve or args.reject
        decision = "approved" if args.approve else "rejected"
        entry = service.review_queue_entry(entry_id, actor, decision, args.notes)
        print(f"Queue entry {entry['id']}: {entry['status']}")
        return

    entries = service.list_queue(actor, item_type=args.item_type)
    if not entries:
        print("Moderation queue is empty.")
        return
    print_json(entries)


def main():
    # Load .env if present (VENUEDESK_DB_PATH, VENUEDESK_RESTRICTED_CATEGORY, etc.)
    load_env()
    parser = argparse.ArgumentParser(prog="venuedesk", description="Venue directory moderation engine")
    parser.add_argument("--version", action="store_true", help="Show version")
    parser.add_argument("--db", help="Path to SQLite database (default: VENUEDESK_DB_PATH or data/venuedesk.db)")

    subparsers = parser.add_subparsers(dest="command")
    ini = subparsers.add_parser("init-db", help="Create the database tables")
    ini.set_defaults(func=cmd_init_db)

    usr = subparsers.add_parser("add-user", help="Register an actor known to the engine")
    usr.add_argument("--pseudonym", required=True)
    usr.add_argument("--role", default="user", choices=ROLES)
    usr.set_defaults(func=cmd_add_user)

    srv = subparsers.add_parser("serve", help="Run the HTTP API")
    srv.add_argument("--host", default="127.0.0.1")
    srv.add_argument("--port", type=int, default=5000)
    srv.add_argument("--debug", action="store_true")
    srv.set_defaults(func=cmd_serve)

    cw = subparsers.add_parser("create-worker", help="Create a worker from a JSON payload and queue it for review")
    cw.add_argument("--input", required=True, help="Path to worker JSON (fields plus optional venue_ids)")
    cw.add_argument("--actor", required=True, help="Acting user id")
    cw.set_defaults(func=cmd_create_worker)

    cv = subparsers.add_parser("create-venue", help="Create a venue from a JSON payload")
    cv.add_argument("--input", required=True, help="Path to venue JSON")
    cv.add_argument("--actor", required=True, help="Acting user id")
    cv.set_defaults(func=cmd_create_venue)

    prp = subparsers.add_parser("propose", help="Submit an edit proposal")
    prp.add_argument("--item-type", required=True, choices=["worker", "venue"])
    prp.add_argument("--item-id", required=True)
    prp.add_argument("--input", required=True, help="Path to JSON with the proposed changes")
    prp.add_argument("--actor", required=True, help="Acting user id")
    prp.set_defaults(func=cmd_propose)

    for decision in ("approve", "reject"):
        rev = subparsers.add_parser(decision, help=f"{decision.capitalize()} a pending proposal")
        rev.add_argument("proposal_id")
        rev.add_argument("--actor", required=True, help="Moderator user id")
        rev.add_argument("--notes", help="Moderator notes")
        rev.set_defaults(func=cmd_review, decision=decision)

    lst = subparsers.add_parser("list-proposals", help="List edit proposals")
    lst.add_argument("--actor", required=True, help="Moderator user id")
    lst.add_argument("--status", choices=["pending", "approved", "rejected"])
    lst.add_argument("--item-type", choices=["worker", "venue"])
    lst.set_defaults(func=cmd_list_proposals)

    rq = subparsers.add_parser("review-queue", help="Show the moderation queue or review one entry")
    rq.add_argument("--actor", required=True, help="Moderator user id")
    rq.add_argument("--item-type", choices=["worker", "venue"])
    group = rq.add_mutually_exclusive_group()
    group.add_argument("--approve", metavar="ENTRY_ID", help="Approve a queue entry")
    group.add_argument("--reject", metavar="ENTRY_ID", help="Reject a queue entry")
    rq.add_argument("--notes", help="Moderator notes")
    rq.set_defaults(func=cmd_review_queue)

    args = parser.parse_args()

    if args.version:
        print(__version__)
        return

    if hasattr(args, "func"):
        try:
            args.func(args)
        except WorkflowError as e:
            raise SystemExit(f"Error [{e.code}]: {e}")
        return

    parser.print_help()


if __name__ == "__main__":
    main()
