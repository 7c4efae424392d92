"""Interactive prompts for choosing members and entering split amounts."""

import logging
from decimal import Decimal
from typing import Any

from prompt_toolkit import PromptSession
from prompt_toolkit.completion import Completer, Completion
from prompt_toolkit.document import Document

from ..exceptions import ValidationError
from ..models import Member
from .reconciler import equal_split, format_currency, from_cents, parse_currency

logger = logging.getLogger(__name__)


class MemberCompleter(Completer):
    """Fuzzy search completer for family group members."""

    def __init__(self, members: list[Member]):
        """Initialize the completer with the group's members."""
        self.members = members

        # Build searchable strings and label-to-id mapping
        self.searchable = []
        self.label_to_id = {}
        for member in members:
            label = f"{member.name} <{member.email}>"
            self.searchable.append((member.id, label))
            self.label_to_id[label] = member.id

    def get_completions(self, document: Document, complete_event: Any):
        """Get fuzzy-matched completions."""
        query = document.text.lower()

        for _member_id, label in self.searchable:
            if not query or self._fuzzy_match(query, label.lower()):
                yield Completion(
                    text=label,
                    start_position=-len(document.text),
                    display=label,
                )

    def _fuzzy_match(self, query: str, text: str) -> bool:
        """
        Fuzzy match: all characters in query must appear in order in text.

        Example:
            query="al" matches "Alice <alice@example.com>"
        """
        query_idx = 0
        for char in text:
            if query_idx < len(query) and char == query[query_idx]:
                query_idx += 1
        return query_idx == len(query)


def select_member_interactive(members: list[Member], prompt: str = "Member") -> str | None:
    """
    Pick a member with fuzzy search.

    Returns:
        Selected member ID, or None to cancel
    """
    print("   Type to search, press Enter to confirm, Ctrl+C to cancel\n")

    completer = MemberCompleter(members)
    session: PromptSession[str] = PromptSession(completer=completer)

    try:
        while True:
            result = session.prompt(f"{prompt}: ", complete_while_typing=True)

            if not result:
                return None

            member_id = completer.label_to_id.get(result)
            if member_id:
                logger.info(f"User selected member {member_id}")
                return member_id

            print("❌ Unknown member. Please pick from the list or press Tab to complete.")

    except KeyboardInterrupt:
        print("\n⏭️  Cancelled")
        return None
    except EOFError:
        return None


def prompt_split_amounts(
    members: list[Member], total_cents: int, currency: str = "USD"
) -> dict[str, Decimal] | None:
    """
    Ask for each member's share, pre-filled with an equal split.

    Entering 0 leaves a member out. The running total is shown after each
    entry; the engine validates the final sum.

    Returns:
        Mapping of member ID to amount, or None if cancelled
    """
    defaults = {
        split.user_id: split.amount_cents
        for split in equal_split(total_cents, [m.id for m in members])
    }
    session: PromptSession[str] = PromptSession()

    print(f"\n💳 Split {format_currency(total_cents, currency)} between members")
    print("   Enter 0 to leave someone out, Ctrl+C to cancel\n")

    amounts: dict[str, Decimal] = {}
    running = 0
    try:
        for member in members:
            while True:
                text = session.prompt(
                    f"{member.name}: ", default=str(from_cents(defaults[member.id]))
                )
                try:
                    cents = parse_currency(text, field=member.name)
                    break
                except ValidationError as e:
                    print(f"❌ {e}")

            if cents:
                amounts[member.id] = from_cents(cents)
                running += cents
            print(
                f"   Running total: {format_currency(running, currency)} "
                f"of {format_currency(total_cents, currency)}"
            )

    except KeyboardInterrupt:
        print("\n⏭️  Cancelled")
        return None
    except EOFError:
        return None

    return amounts


def confirm_action(message: str) -> bool:
    """Simple yes/no confirmation."""
    response = input(f"{message} [y/N] ").strip().lower()
    return response in ("y", "yes")
