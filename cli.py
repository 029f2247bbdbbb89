#!/usr/bin/env python3
"""Face Recall CLI."""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from face_recall.config import ConfigError, Settings, load_settings
from face_recall.contacts import Contact, ContactStore, get_backend
from face_recall.errors import FaceRecallError
from face_recall.recognition import (
    FileImageDevice,
    FlowState,
    RecognitionSession,
    build_matcher,
)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="face-recall",
        description="Remember who you just saw: contacts, sightings and photo recognition.",
    )
    parser.add_argument("--user", help="Roster owner (defaults to FR_CLI_USER).")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging.")

    subparsers = parser.add_subparsers(dest="command", required=True)

    list_parser = subparsers.add_parser("list", help="List contacts.")
    list_parser.add_argument("--search", help="Filter by name or relationship.")

    recent_parser = subparsers.add_parser("recent", help="Show recently seen contacts.")
    recent_parser.add_argument("--limit", type=int, default=4, help="How many to show.")

    add_parser = subparsers.add_parser("add", help="Add a contact.")
    add_parser.add_argument("name")
    add_parser.add_argument("relationship")
    add_parser.add_argument("--location", help="Where you met.")
    add_parser.add_argument("--notes")
    add_parser.add_argument("--contact", help="Phone number or other contact detail.")
    add_parser.add_argument("--avatar", help="Image URL or path.")

    seen_parser = subparsers.add_parser("seen", help="Record that you saw a contact.")
    seen_parser.add_argument("contact_id")
    seen_parser.add_argument("--location")

    delete_parser = subparsers.add_parser("delete", help="Delete a contact.")
    delete_parser.add_argument("contact_id")

    history_parser = subparsers.add_parser("history", help="Show the sighting log.")
    history_parser.add_argument("contact_id", nargs="?")
    history_parser.add_argument("--limit", type=int, default=20)

    recognize_parser = subparsers.add_parser(
        "recognize",
        help="Recognize the person in a photo and optionally record the sighting.",
    )
    recognize_parser.add_argument("image", type=Path, help="Path to a still image.")
    recognize_parser.add_argument("--location", help="Where the photo was taken.")
    recognize_parser.add_argument(
        "--matcher",
        choices=("auto", "live", "stub"),
        default="auto",
        help="Matcher preference: live service, stub, or auto fallback.",
    )
    recognize_parser.add_argument(
        "--action",
        choices=("ask", "save", "discard"),
        default="ask",
        help="What to do with a recognized face.",
    )
    recognize_parser.add_argument(
        "--self-report",
        action="store_true",
        help="You do not recognize the face; skip automatic matching.",
    )

    subparsers.add_parser(
        "check-config",
        help="Validate environment configuration.",
    )

    return parser


def _print_contact(contact: Contact) -> None:
    seen = f" | last seen {contact.last_seen}" if contact.last_seen else ""
    print(f"- {contact.id}: {contact.name} ({contact.relationship}){seen}")


def _cmd_list(store: ContactStore, search: str | None) -> int:
    contacts = store.search(search) if search else store.list()
    if not contacts:
        print("No contacts found." if search else "No contacts yet.")
        return 0
    for contact in contacts:
        _print_contact(contact)
    return 0


def _cmd_recent(store: ContactStore, limit: int) -> int:
    contacts = store.recent(limit)
    print(f"People you saw recently ({len(contacts)}):")
    for contact in contacts:
        _print_contact(contact)
    return 0


def _cmd_add(store: ContactStore, args: argparse.Namespace) -> int:
    draft = {
        "name": args.name,
        "relationship": args.relationship,
        "location": args.location,
        "notes": args.notes,
        "phone": args.contact,
        "avatar": args.avatar,
    }
    contact = store.create({k: v for k, v in draft.items() if v is not None})
    print(f"Added {contact.name} as {contact.id}")
    return 0


def _cmd_seen(store: ContactStore, contact_id: str, location: str | None) -> int:
    store.record_sighting(contact_id, location)
    contact = store.get(contact_id)
    print(f"Recorded: {contact.name} — {contact.last_seen}")
    return 0


def _cmd_delete(store: ContactStore, contact_id: str) -> int:
    store.delete(contact_id)
    print(f"Deleted {contact_id}")
    return 0


def _cmd_history(store: ContactStore, contact_id: str | None, limit: int) -> int:
    sightings = list(reversed(store.sightings(contact_id)))[:limit]
    if not sightings:
        print("No sightings recorded.")
        return 0
    for sighting in sightings:
        where = f" at {sighting.location}" if sighting.location else ""
        print(f"- {sighting.timestamp:%Y-%m-%d %H:%M} {sighting.name} ({sighting.relationship}){where}")
    return 0


def _ask(prompt: str) -> str:
    try:
        return input(prompt).strip()
    except EOFError:
        return ""


def _cmd_recognize(store: ContactStore, settings: Settings, args: argparse.Namespace) -> int:
    matcher, warning = build_matcher(settings, source=args.matcher)
    if warning:
        print(warning)

    def add_new(image) -> None:
        print("Add this person as a new contact.")
        name = _ask("Name: ")
        relationship = _ask("Relationship: ")
        if not name or not relationship:
            print("Skipped: name and relationship are required.")
            return
        contact = store.create(
            {"name": name, "relationship": relationship, "avatar": str(args.image.resolve())}
        )
        print(f"Added {contact.name} as {contact.id}")

    session = RecognitionSession(
        store,
        FileImageDevice(args.image),
        matcher,
        user_provider=lambda: store.user_id,
        on_add_new=add_new,
        default_location=settings.default_location,
    )
    with session:
        view = session.capture(self_report=args.self_report)

        if view.state is FlowState.NOT_REMEMBERED:
            print(view.message)
            answer = _ask("Contact id if you remember them, 'add' for a new contact, blank for no: ")
            if answer.lower() == "add":
                session.add_new()
                return 0
            if not answer:
                session.not_remembered()
                print("Okay, nothing was recorded.")
                return 0
            view = session.remembered(answer)

        if view.state is FlowState.UNRECOGNIZED:
            print(view.message)
            if args.action == "ask" and _ask("Add as a new contact? [y/N] ").lower() == "y":
                session.add_new()
            return 0

        print(view.message)
        print(view.display_text)
        action = args.action
        if action == "ask":
            action = "save" if _ask("Save snap? [y/N] ").lower() == "y" else "discard"
        if action == "save":
            sighting = session.save(args.location)
            print(f"Saved sighting of {sighting.name}.")
        else:
            session.discard()
            print("Snap deleted.")
    return 0


def _cmd_check_config() -> int:
    try:
        settings = load_settings()
    except ConfigError as exc:
        print(f"Config check failed: {exc}", file=sys.stderr)
        return 1

    print(
        f"environment={settings.environment}",
        f"matcher={'configured' if settings.matcher_configured else 'stub'}",
        f"timeout={settings.matcher_timeout}s",
        f"user={settings.cli_user}",
    )
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "check-config":
        return _cmd_check_config()

    try:
        settings = load_settings()
        store = ContactStore(args.user or settings.cli_user, get_backend(settings.contacts_dir))

        if args.command == "list":
            return _cmd_list(store, args.search)
        if args.command == "recent":
            return _cmd_recent(store, args.limit)
        if args.command == "add":
            return _cmd_add(store, args)
        if args.command == "seen":
            return _cmd_seen(store, args.contact_id, args.location)
        if args.command == "delete":
            return _cmd_delete(store, args.contact_id)
        if args.command == "history":
            return _cmd_history(store, args.contact_id, args.limit)
        if args.command == "recognize":
            return _cmd_recognize(store, settings, args)
    except (ConfigError, FaceRecallError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    parser.error(f"Unknown command: {args.command}")
    return 2


if __name__ == "__main__":
    sys.exit(main())
