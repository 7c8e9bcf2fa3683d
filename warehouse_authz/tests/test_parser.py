"""Test cases for the policy document parser."""

import os
from unittest import TestCase

from ddt import data as ddt_data
from ddt import ddt, unpack

from warehouse_authz.api.data import EngineConfig, Privilege, ResourcePath
from warehouse_authz.constants.actions import ALL, SELECT
from warehouse_authz.engine.parser import PolicyParser
from warehouse_authz.exceptions import MalformedPolicy, MissingPolicyDocument
from warehouse_authz.tests.test_utils import PolicyFilesMixin


@ddt
class TestPolicyParser(TestCase):
    """Tests for parsing policy text into policy documents."""

    def setUp(self):
        super().setUp()
        self.parser = PolicyParser()

    def test_parses_all_sections(self):
        """Each section lands in its own mapping.

        Expected Result:
            - groups, roles, users and databases are populated from their sections
            - privilege strings are parsed into Privilege values
        """
        document = self.parser.parse(
            "\n".join(
                [
                    "[groups]",
                    "analysts = select_sales",
                    "[roles]",
                    "select_sales = server=server1->db=sales->action=select",
                    "[users]",
                    "alice = analysts",
                    "[databases]",
                    "staging = /etc/warehouse/staging.ini",
                ]
            )
        )

        self.assertEqual(document.groups, {"analysts": frozenset({"select_sales"})})
        self.assertEqual(
            document.roles["select_sales"],
            frozenset({Privilege(ResourcePath("server1", "sales"), SELECT)}),
        )
        self.assertEqual(document.users, {"alice": frozenset({"analysts"})})
        self.assertEqual(document.databases, {"staging": "/etc/warehouse/staging.ini"})
        self.assertFalse(document.is_delegated)

    @ddt_data(
        ("user_group1 = role_a, role_b",),
        ("user_group1 = role_a role_b",),
        ("user_group1 = role_a,role_b",),
        ("user_group1 =   role_a ,  role_b  ",),
    )
    @unpack
    def test_value_lists_are_comma_or_space_separated(self, line):
        """Value lists accept commas, whitespace or both as separators."""
        document = self.parser.parse(f"[groups]\n{line}")

        self.assertEqual(document.groups["user_group1"], frozenset({"role_a", "role_b"}))

    def test_spaces_inside_privilege_chains_are_not_separators(self):
        """Whitespace around '->' and '=' belongs to the chain.

        Expected Result:
            - 'server = s1 -> db = d1' is one privilege, not several list items
        """
        document = self.parser.parse("[roles]\nreader = server = s1 -> db = d1 -> action = select, server=s1->db=d2")

        self.assertEqual(
            document.roles["reader"],
            frozenset(
                {
                    Privilege(ResourcePath("s1", "d1"), SELECT),
                    Privilege(ResourcePath("s1", "d2"), ALL),
                }
            ),
        )

    def test_duplicate_keys_merge_values(self):
        """A name declared twice in a section accumulates the union of its values."""
        document = self.parser.parse(
            "\n".join(
                [
                    "[groups]",
                    "user_group1 = role_a",
                    "user_group1 = role_b, role_a",
                    "[users]",
                    "alice = g1",
                    "alice = g2",
                ]
            )
        )

        self.assertEqual(document.groups["user_group1"], frozenset({"role_a", "role_b"}))
        self.assertEqual(document.users["alice"], frozenset({"g1", "g2"}))

    def test_comments_and_blank_lines_are_ignored(self):
        document = self.parser.parse("# policy\n\n[groups]\n; legacy\n  \ng = r\n")

        self.assertEqual(document.groups, {"g": frozenset({"r"})})

    def test_section_names_are_case_insensitive(self):
        document = self.parser.parse("[GROUPS]\ng = r\n[ Roles ]\nr = server=s1")

        self.assertIn("g", document.groups)
        self.assertIn("r", document.roles)

    def test_privilege_without_action_grants_all(self):
        """'server=server1' with no action component grants every action."""
        document = self.parser.parse("[roles]\nall_server = server=server1")

        self.assertEqual(document.roles["all_server"], frozenset({Privilege(ResourcePath("server1"), ALL)}))

    @ddt_data(
        ("g = r", 1, "outside of any section"),
        ("[groups]\ng r", 2, "expected 'name = value'"),
        ("[groups]\n = r", 2, "empty name"),
        ("[groups]\ng = ", 2, "no value"),
        ("[groups]\ng = r\n[permissions]\np = x", 3, "unknown section"),
        ("[roles]\nr = db=db1->action=select", 2, "out of order"),
        ("[roles]\nr = server=s1->table=t1", 2, "out of order"),
        ("[roles]\nr = server=s1->action=fly", 2, "Unknown action"),
        ("[roles]\nr = server=s1->db=", 2, "no value"),
        ("[roles]\nr = server=s1->action=select->db=d1", 2, "after action"),
        ("[databases]\ndb2 = /a.ini\ndb2 = /b.ini", 3, "more than one document"),
    )
    @unpack
    def test_malformed_documents_are_rejected(self, text, line_number, message):
        """Malformed text fails the parse, identifying the offending line.

        Expected Result:
            - MalformedPolicy is raised with the line number of the bad line
        """
        with self.assertRaises(MalformedPolicy) as context:
            self.parser.parse(text, location="policy.ini")

        self.assertEqual(context.exception.line_number, line_number)
        self.assertIn(message, str(context.exception))
        self.assertEqual(context.exception.location, "policy.ini")

    def test_unknown_sections_can_be_ignored(self):
        """With ignore_unknown_sections the whole unknown section is skipped."""
        parser = PolicyParser(EngineConfig(ignore_unknown_sections=True))

        document = parser.parse("[groups]\ng = r\n[permissions]\np = anything goes\n[roles]\nr = server=s1")

        self.assertEqual(set(document.groups), {"g"})
        self.assertEqual(set(document.roles), {"r"})

    def test_extra_actions_are_accepted(self):
        parser = PolicyParser(EngineConfig(extra_actions=["Refresh"]))

        document = parser.parse("[roles]\nr = server=s1->db=d1->action=refresh")

        self.assertEqual(next(iter(document.roles["r"])).action, "refresh")

    def test_actions_and_keys_are_case_insensitive(self):
        document = self.parser.parse("[roles]\nr = SERVER=Server1->DB=Sales->Action=SELECT")

        self.assertEqual(document.roles["r"], frozenset({Privilege(ResourcePath("Server1", "Sales"), SELECT)}))

    def test_delegated_document_ignores_global_only_sections(self):
        """Per-database documents cannot declare users or further delegations.

        Expected Result:
            - [users] and [databases] entries are dropped
            - [groups] and [roles] entries are kept
        """
        document = self.parser.parse(
            "\n".join(
                [
                    "[users]",
                    "mallory = admin",
                    "[groups]",
                    "user_group2 = select_tbl2",
                    "[databases]",
                    "db3 = /tmp/db3.ini",
                    "[roles]",
                    "select_tbl2 = server=server1->db=db2->table=tbl2->action=select",
                ]
            ),
            database="db2",
        )

        self.assertEqual(document.users, {})
        self.assertEqual(document.databases, {})
        self.assertEqual(set(document.groups), {"user_group2"})
        self.assertEqual(set(document.roles), {"select_tbl2"})
        self.assertTrue(document.is_delegated)


class TestPolicyParserFiles(PolicyFilesMixin):
    """Tests for reading policy documents from disk."""

    def test_parse_file(self):
        path = self.write_policy("policy.ini", ["[groups]", "g = r"])

        document = PolicyParser().parse_file(path)

        self.assertEqual(document.location, path)
        self.assertEqual(document.groups, {"g": frozenset({"r"})})

    def test_missing_file(self):
        missing = os.path.join(self.policy_dir, "missing.ini")

        with self.assertRaises(MissingPolicyDocument) as context:
            PolicyParser().parse_file(missing)

        self.assertEqual(context.exception.location, missing)

    def test_file_that_is_not_utf8(self):
        path = os.path.join(self.policy_dir, "binary.ini")
        with open(path, "wb") as policy_file:
            policy_file.write(b"[groups]\ng = \xff\xfe\n")

        with self.assertRaises(MalformedPolicy):
            PolicyParser().parse_file(path)
