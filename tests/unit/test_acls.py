"""
Unit tests for the authorization gate.

The gate is a pure function of (session, required roles, registry), so the
tests build sessions directly and never touch storage.
"""

import pytest

from qdb.acls import (
    ALLOW,
    ACLChecker,
    AuthorizationError,
    Decision,
    DenyReason,
    InsufficientPermissions,
    NotLoggedIn,
    authorize,
)
from qdb.auth import Session
from qdb.permissions import LOGGED_IN, PermissionRegistry, Role, UnknownRole

NOT_LOGGED_IN = Decision.deny(DenyReason.NOT_LOGGED_IN)
INSUFFICIENT = Decision.deny(DenyReason.INSUFFICIENT_PERMISSIONS)

SCENARIO_REGISTRY = PermissionRegistry(
    {"post_quotes": 1, "edit_quotes": 2, "delete_quotes": 4, "approve_quotes": 16}
)


class TestConcreteScenario:
    """alice holds post_quotes | delete_quotes (flags=5)."""

    def test_single_held_role(self, alice_session):
        assert authorize(alice_session, [Role.POST_QUOTES], SCENARIO_REGISTRY) == ALLOW

    def test_single_missing_role(self, alice_session):
        assert authorize(alice_session, [Role.EDIT_QUOTES], SCENARIO_REGISTRY) == INSUFFICIENT

    def test_both_held(self, alice_session):
        decision = authorize(
            alice_session, [Role.POST_QUOTES, Role.DELETE_QUOTES], SCENARIO_REGISTRY
        )
        assert decision == ALLOW

    def test_conjunction_one_missing(self, alice_session):
        decision = authorize(
            alice_session, [Role.POST_QUOTES, Role.EDIT_QUOTES], SCENARIO_REGISTRY
        )
        assert decision == INSUFFICIENT

    def test_role_names_work_too(self, alice_session):
        assert authorize(alice_session, ["post_quotes", "delete_quotes"]) == ALLOW


class TestAnonymous:
    def test_logged_in_pseudo_role(self, anonymous_session):
        assert authorize(anonymous_session, [LOGGED_IN]) == NOT_LOGGED_IN

    def test_real_role(self, anonymous_session):
        assert authorize(anonymous_session, [Role.POST_QUOTES]) == NOT_LOGGED_IN

    def test_flags_without_username_still_denied(self):
        session = Session(username=None, user_id=None, flags=63)
        assert authorize(session, [Role.POST_QUOTES]) == NOT_LOGGED_IN

    def test_empty_role_list(self, anonymous_session):
        assert authorize(anonymous_session, []) == NOT_LOGGED_IN


class TestLoggedInPseudoRole:
    def test_allows_with_zero_flags(self):
        session = Session(username="bob", user_id=2, flags=0)
        assert authorize(session, [LOGGED_IN]) == ALLOW

    def test_skips_real_role_checks(self):
        session = Session(username="bob", user_id=2, flags=0)
        assert authorize(session, [LOGGED_IN, Role.SET_FLAGS]) == ALLOW
        assert authorize(session, [Role.SET_FLAGS, LOGGED_IN]) == ALLOW


class TestFailClosed:
    def test_empty_role_list_denies_logged_in_user(self, alice_session):
        assert authorize(alice_session, []) == INSUFFICIENT

    @pytest.mark.parametrize("bad", ["admin", "", 4, None, Role.POST_QUOTES | Role.DELETE_QUOTES])
    def test_unknown_role_denies(self, alice_session, bad):
        assert authorize(alice_session, [Role.POST_QUOTES, bad]) == INSUFFICIENT

    def test_role_outside_registry_denies(self, alice_session):
        session = Session(username="root", user_id=1, flags=63)
        assert authorize(session, [Role.LIST_USERS], SCENARIO_REGISTRY) == INSUFFICIENT

    def test_unknown_role_is_logged(self, alice_session, caplog):
        with caplog.at_level("WARNING", logger="qdb.acls"):
            authorize(alice_session, ["admin"])
        assert "unknown role" in caplog.text


class TestDecision:
    def test_truthiness(self):
        assert ALLOW
        assert not NOT_LOGGED_IN
        assert ALLOW.reason is None
        assert INSUFFICIENT.reason is DenyReason.INSUFFICIENT_PERMISSIONS

    def test_error_for_decision(self):
        assert isinstance(AuthorizationError.for_decision(NOT_LOGGED_IN), NotLoggedIn)
        assert isinstance(
            AuthorizationError.for_decision(INSUFFICIENT), InsufficientPermissions
        )


class TestACLChecker:
    def test_check_roles_accepts_known_and_logged_in(self):
        ACLChecker().check_roles([LOGGED_IN, Role.SET_FLAGS, "list_users"])

    def test_check_roles_fails_fast(self):
        with pytest.raises(UnknownRole):
            ACLChecker().check_roles(["moderate_everything"])

    def test_permit_delegates_to_registry(self, alice_session):
        checker = ACLChecker(SCENARIO_REGISTRY)
        assert checker.permit(alice_session, [Role.DELETE_QUOTES]) == ALLOW
        assert checker.permit(alice_session, [Role.SET_FLAGS]) == INSUFFICIENT
