"""Policy document parser.

Turns the section-based policy text format into a :class:`PolicyDocument`::

    [groups]
    analysts = select_sales, insert_staging

    [roles]
    select_sales = server=server1->db=sales->action=select

    [users]
    alice = analysts

    [databases]
    staging = /etc/warehouse/staging-policy.ini

Privilege strings are parsed into :class:`Privilege` values here so a broken
privilege fails the load instead of a live request.
"""

import logging
import re
from collections import defaultdict

from warehouse_authz.api.data import EngineConfig, PolicyDocument, PolicySection, Privilege
from warehouse_authz.exceptions import MalformedPolicy, MissingPolicyDocument

logger = logging.getLogger(__name__)

COMMENT_PREFIXES = ("#", ";")
SECTION_PATTERN = re.compile(r"^\[\s*([^\]]*?)\s*\]$")
# whitespace around chain separators is not a list separator
CHAIN_SPACING_PATTERN = re.compile(r"\s*(->|=)\s*")
LIST_SEPARATOR_PATTERN = re.compile(r"[,\s]+")

# Sections a delegated (per-database) document may not define
GLOBAL_ONLY_SECTIONS = (PolicySection.USERS, PolicySection.DATABASES)


class PolicyParser:
    """Parser for global and per-database policy documents.

    Args:
        config: Engine settings; decides the accepted actions and how unknown
            sections are treated.
    """

    def __init__(self, config: EngineConfig = None):
        self.config = config or EngineConfig()

    def parse_file(self, location: str, database: str = None) -> PolicyDocument:
        """Read and parse the policy document at ``location``.

        Args:
            location: Path of the policy file.
            database: Name of the database the document is delegated for, None for the global document.

        Raises:
            MissingPolicyDocument: If the file cannot be read.
            MalformedPolicy: If the content is invalid.
        """
        try:
            with open(location, "r", encoding="utf-8") as policy_file:
                text = policy_file.read()
        except OSError as e:
            raise MissingPolicyDocument(f"Policy document not readable at {location}: {e}", location) from e
        except UnicodeDecodeError as e:
            raise MalformedPolicy(location, 0, "", f"not valid UTF-8 text: {e}") from e

        return self.parse(text, location=location, database=database)

    def parse(self, text: str, location: str = "<string>", database: str = None) -> PolicyDocument:
        """Parse policy ``text`` into a document.

        Duplicate keys inside a section accumulate their values. Sections only
        the global document may carry are skipped with a warning when
        ``database`` is set.

        Raises:
            MalformedPolicy: On the first invalid line.
        """
        entries = {section: defaultdict(set) for section in PolicySection}
        databases = {}
        section = None
        skipping = False

        for line_number, raw_line in enumerate(text.splitlines(), start=1):
            line = raw_line.strip()
            if not line or line.startswith(COMMENT_PREFIXES):
                continue

            header = SECTION_PATTERN.match(line)
            if header:
                section, skipping = self._enter_section(header.group(1), location, line_number, line, database)
                continue

            if skipping:
                continue
            if section is None:
                raise MalformedPolicy(location, line_number, line, "entry outside of any section")

            key, value = self._split_entry(location, line_number, line)

            if section is PolicySection.DATABASES:
                previous = databases.get(key)
                if previous is not None and previous != value:
                    raise MalformedPolicy(
                        location, line_number, line, f"database '{key}' is delegated to more than one document"
                    )
                databases[key] = value
                continue

            for item in self._split_values(value):
                if section is PolicySection.ROLES:
                    try:
                        item = Privilege.from_string(item, actions=self.config.actions)
                    except ValueError as e:
                        raise MalformedPolicy(location, line_number, line, str(e)) from e
                entries[section][key].add(item)

        document = PolicyDocument(
            location=location,
            groups=entries[PolicySection.GROUPS],
            roles=entries[PolicySection.ROLES],
            users=entries[PolicySection.USERS],
            databases=databases,
            database=database,
        )
        logger.info(
            f"Parsed policy document {location}: {len(document.groups)} groups, "
            f"{len(document.roles)} roles, {len(document.users)} users, "
            f"{len(document.databases)} delegated databases."
        )
        return document

    def _enter_section(self, name, location, line_number, line, database):
        """Resolve a section header.

        Returns:
            tuple: The section (or None when unknown and ignored) and whether
            the section's entries are to be skipped.
        """
        try:
            section = PolicySection(name.lower())
        except ValueError:
            if not self.config.ignore_unknown_sections:
                raise MalformedPolicy(location, line_number, line, f"unknown section '{name}'") from None
            logger.warning(f"{location}:{line_number}: skipping unknown section '{name}'.")
            return None, True

        if database is not None and section in GLOBAL_ONLY_SECTIONS:
            logger.warning(
                f"{location}:{line_number}: section [{section.value}] is only honoured in the global "
                f"policy document, ignoring it in the document for database '{database}'."
            )
            return section, True

        return section, False

    @staticmethod
    def _split_entry(location, line_number, line):
        """Split a ``key = value`` line, rejecting empty keys and values."""
        if "=" not in line:
            raise MalformedPolicy(location, line_number, line, "expected 'name = value'")
        key, value = (part.strip() for part in line.split("=", 1))
        if not key:
            raise MalformedPolicy(location, line_number, line, "empty name")
        if not value:
            raise MalformedPolicy(location, line_number, line, f"no value for '{key}'")
        return key, value

    @staticmethod
    def _split_values(value):
        """Split a comma-or-space separated value list."""
        value = CHAIN_SPACING_PATTERN.sub(r"\1", value)
        return [item for item in LIST_SEPARATOR_PATTERN.split(value) if item]
