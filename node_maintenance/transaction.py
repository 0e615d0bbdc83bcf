"""
Parsing of the package manager's transaction history report.

A typical ``dnf history info last`` report after docker packages were
upgraded looks like::

    Transaction ID : 24
    Begin time     : Thu 22 Aug 2024 11:30:19 PM CEST
    Begin rpmdb    : 01b08e3ca5704da392c8316abf4978f0b2c0e3ae4166b8fe74f6fb78e5cf3bcf
    End time       : Thu 22 Aug 2024 11:30:34 PM CEST (15 seconds)
    User           : Foreman Remote Execution <foremanremexec>
    Return-Code    : Success
    Command Line   : update -y
    Packages Altered:
        Upgrade  containerd.io-1.7.20-3.1.el9.x86_64           @docker-ce-stable
        Upgraded containerd.io-1.7.19-3.1.el9.x86_64           @@System
        Upgrade  docker-ce-3:27.1.2-1.el9.x86_64               @docker-ce-stable
        Upgraded docker-ce-3:27.1.1-1.el9.x86_64               @@System

Under ``LC_ALL=C`` the begin time is rendered month first instead, e.g.
``Thu Aug 22 23:30:19 2024``.
"""

import re
from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional

MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}

# "Thu Aug 22 23:30:19 2024", dnf under LC_ALL=C
_MONTH_DAY_TIME_YEAR = re.compile(
    r"\b([A-Za-z]{3})[A-Za-z]*\s+(\d{1,2})\s+\d{1,2}:\d{2}:\d{2}\s+(\d{4})\b"
)
# "Thu 22 Aug 2024 11:30:19 PM CEST"
_DAY_MONTH_YEAR = re.compile(r"\b(\d{1,2})\s+([A-Za-z]{3})[A-Za-z]*\s+(\d{4})\b")
# "2024-08-22 23:30"
_ISO_DATE = re.compile(r"\b(\d{4})-(\d{2})-(\d{2})\b")

_FIELD = re.compile(r"^\s*([A-Za-z][A-Za-z -]*?)\s*:\s?(.*)$")
_ALTERED = re.compile(r"^\s+([A-Z][A-Za-z-]+)\s+(\S+)(?:\s+(\S+))?\s*$")
_UPGRADE_MARKER = re.compile(r"Upgrade\s+")


@dataclass(frozen=True)
class PackageAction:
    action: str
    package: str
    repository: Optional[str] = None


@dataclass
class PackageTransactionRecord:
    transaction_id: Optional[str] = None
    begin_time: Optional[str] = None
    begin_date: Optional[date] = None
    command_line: Optional[str] = None
    return_code: Optional[str] = None
    actions: List[PackageAction] = field(default_factory=list)
    raw: str = ""

    def began_on(self, day):
        return self.begin_date is not None and self.begin_date == day

    @property
    def upgrade_lines(self):
        """Report lines carrying an ``Upgrade`` marker (``Upgraded`` lines excluded)."""
        return [line.strip() for line in self.raw.splitlines() if _UPGRADE_MARKER.search(line)]

    @property
    def upgraded_packages(self):
        return [a.package for a in self.actions if a.action == "Upgrade"]


def _named_month_date(year, month_name, day):
    month = MONTHS.get(month_name.lower())
    if month is None:
        return None
    try:
        return date(int(year), month, int(day))
    except ValueError:
        return None


def parse_begin_date(text):
    """Extract the calendar date from a begin-time value, or None."""
    if not text:
        return None
    match = _MONTH_DAY_TIME_YEAR.search(text)
    if match:
        month_name, day, year = match.groups()
        return _named_month_date(year, month_name, day)
    match = _DAY_MONTH_YEAR.search(text)
    if match:
        day, month_name, year = match.groups()
        return _named_month_date(year, month_name, day)
    match = _ISO_DATE.search(text)
    if match:
        try:
            return date(*(int(part) for part in match.groups()))
        except ValueError:
            return None
    return None


def parse_transaction_report(text):
    """Parse the text of ``dnf history info last`` into a record."""
    record = PackageTransactionRecord(raw=text or "")
    in_altered = False
    for line in record.raw.splitlines():
        if not line.strip():
            continue
        if in_altered:
            match = _ALTERED.match(line)
            if match:
                action, package, repository = match.groups()
                record.actions.append(PackageAction(action, package, repository))
                continue
            in_altered = False

        match = _FIELD.match(line)
        if not match:
            continue
        name, value = match.group(1).strip().lower(), match.group(2).strip()
        if name == "packages altered":
            in_altered = True
        elif name == "transaction id":
            record.transaction_id = value
        elif name == "begin time":
            record.begin_time = value
            record.begin_date = parse_begin_date(value)
        elif name == "command line":
            record.command_line = value
        elif name == "return-code":
            record.return_code = value
    return record
