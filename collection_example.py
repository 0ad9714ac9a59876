"""Join a handful of users with their e-mails in memory and print the matches."""

from __future__ import annotations

import sys
from dataclasses import dataclass
from typing import List, Optional

from join_config import get_settings
from join_engine import JoinedPair, RecordSource, collect_into, field_key, iter_join
from join_logging import setup_logging


@dataclass(frozen=True)
class User:
    user_identifier: int
    name: str

    def __str__(self):
        return f"User{{userIdentifier={self.user_identifier} name={self.name}}}"


@dataclass(frozen=True)
class EMail:
    user_id: int
    subject: str
    body: str

    def __str__(self):
        return f"eMail{{userId={self.user_id} subject={self.subject} body={self.body}}}"


USERS = RecordSource.from_records("Users", [
    User(1, "Peter"),
    User(2, "John"),
    User(3, "Bill"),
])

EMAILS = RecordSource.from_records("EMails", [
    EMail(1, "Re: Meeting", "How about 1pm?"),
    EMail(1, "Re: Meeting", "Sorry, I'm not available"),
    EMail(3, "Re: Re: Project proposal", "Give me a few more days to think about it."),
])


def run_example(build_side: Optional[str] = None) -> List[JoinedPair]:
    result: List[JoinedPair] = []
    pairs = iter_join(USERS, EMAILS, field_key("user_identifier"), field_key("user_id"), build_side)
    return collect_into(pairs, result)


def main() -> int:
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_format)
    for pair in run_example():
        print(f"Result = {pair}", file=sys.stderr)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
