# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Tests for the recipient allow-list."""

from mailalert.hook.recipients import RecipientAllowList


class TestRecipientAllowList:
    """Tests for RecipientAllowList."""

    def test_empty_allows_everything(self) -> None:
        """An empty list admits any recipients, even none."""
        allow_list = RecipientAllowList()
        assert allow_list.is_allowed(["anyone@example.com"])
        assert allow_list.is_allowed([])

    def test_normalizes_entries(self) -> None:
        """Entries are trimmed and lower-cased; blanks are dropped."""
        allow_list = RecipientAllowList([" Alerts@Example.COM ", "", "  "])
        assert allow_list.allowed == frozenset({"alerts@example.com"})

    def test_case_insensitive_match(self) -> None:
        """Recipients match regardless of case."""
        allow_list = RecipientAllowList(["alerts@example.com"])
        assert allow_list.is_allowed(["ALERTS@example.com"])

    def test_any_recipient_suffices(self) -> None:
        """One allowed recipient among many is enough."""
        allow_list = RecipientAllowList(["alerts@example.com"])
        assert allow_list.is_allowed(["x@example.com", "alerts@example.com"])

    def test_rejects_others(self) -> None:
        """Recipients not on the list are rejected."""
        allow_list = RecipientAllowList(["alerts@example.com"])
        assert not allow_list.is_allowed(["x@example.com"])
        assert not allow_list.is_allowed([])

    def test_no_domain_wildcard(self) -> None:
        """Matching is exact; domains are not wildcards."""
        allow_list = RecipientAllowList(["example.com"])
        assert not allow_list.is_allowed(["alerts@example.com"])
