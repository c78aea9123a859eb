"""
Unit tests for role resolution.

WHAT: Test buyer/seller/none mapping and permission gating
WHY: Role checks must run before any proposal request is issued
HOW: Call the resolver with known participants
"""

import pytest

from swapchat.services.role_resolver import (
    Permission,
    Role,
    permitted_actions,
    require_role,
    resolve_role,
)
from swapchat.utils.exceptions import Forbidden

from tests.fixtures.factories import BUYER_ID, OUTSIDER_ID, SELLER_ID


@pytest.mark.unit
class TestResolveRole:

    def test_proposer_is_buyer(self, participants):
        assert resolve_role(BUYER_ID, participants) == Role.BUYER

    def test_receiver_is_seller(self, participants):
        assert resolve_role(SELLER_ID, participants) == Role.SELLER

    @pytest.mark.parametrize("user_id", [OUTSIDER_ID, None, ""])
    def test_others_have_no_role(self, participants, user_id):
        assert resolve_role(user_id, participants) == Role.NONE


@pytest.mark.unit
class TestPermissions:

    def test_buyer_permissions(self):
        assert permitted_actions(Role.BUYER) == {
            "create": True, "respond": False, "cancel": True, "validate": True,
        }

    def test_seller_permissions(self):
        assert permitted_actions(Role.SELLER) == {
            "create": False, "respond": True, "cancel": False, "validate": True,
        }

    def test_none_has_no_permissions(self):
        assert not any(permitted_actions(Role.NONE).values())

    def test_require_role_returns_role(self, participants):
        assert require_role(SELLER_ID, participants, Permission.RESPOND) == Role.SELLER

    def test_seller_cannot_create(self, participants):
        with pytest.raises(Forbidden) as exc_info:
            require_role(SELLER_ID, participants, Permission.CREATE)
        assert exc_info.value.code == "FORBIDDEN"

    def test_outsider_cannot_validate(self, participants):
        with pytest.raises(Forbidden):
            require_role(OUTSIDER_ID, participants, Permission.VALIDATE)
