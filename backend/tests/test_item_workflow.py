"""Tests for the order item transition table."""

import pytest

from app.core.errors import StateConflict
from app.core.rbac import UserRole
from app.models.restaurant import ItemStatus
from app.services.item_workflow import (
    ACTION_ROLES,
    TRANSITIONS,
    ItemAction,
    next_status,
    timestamp_field,
)


class TestTransitionTable:

    def test_every_state_is_listed(self):
        assert set(TRANSITIONS) == set(ItemStatus)

    def test_happy_path(self):
        state = ItemStatus.PENDING.value
        for action, expected in [
            (ItemAction.SEND, ItemStatus.SENT),
            (ItemAction.PREPARE, ItemStatus.PREPARING),
            (ItemAction.MARK_READY, ItemStatus.READY),
            (ItemAction.DELIVER, ItemStatus.SERVED),
        ]:
            target = next_status(state, action)
            assert target == expected
            state = target.value

    @pytest.mark.parametrize("state", ["pending", "sent", "preparing", "ready"])
    def test_cancel_from_any_live_state(self, state):
        assert next_status(state, ItemAction.CANCEL) == ItemStatus.REJECTED

    def test_kitchen_cannot_reject_pending(self):
        with pytest.raises(StateConflict):
            next_status("pending", ItemAction.KITCHEN_REJECT)

    @pytest.mark.parametrize("state", ["served", "cancelled", "rejected"])
    def test_terminal_states_refuse_everything(self, state):
        assert TRANSITIONS[ItemStatus(state)] == {}
        for action in ItemAction:
            with pytest.raises(StateConflict):
                next_status(state, action)

    def test_deliver_requires_ready(self):
        with pytest.raises(StateConflict) as exc:
            next_status("preparing", ItemAction.DELIVER)
        assert "preparing" in exc.value.message

    def test_no_skipping_preparing(self):
        with pytest.raises(StateConflict):
            next_status("sent", ItemAction.MARK_READY)


class TestActionRoles:

    def test_waiter_cannot_cook(self):
        assert UserRole.WAITER not in ACTION_ROLES[ItemAction.PREPARE]
        assert UserRole.WAITER not in ACTION_ROLES[ItemAction.MARK_READY]

    def test_kitchen_cannot_send(self):
        assert UserRole.KITCHEN not in ACTION_ROLES[ItemAction.SEND]

    def test_everyone_can_deliver(self):
        assert ACTION_ROLES[ItemAction.DELIVER] == frozenset(UserRole)

    def test_admin_can_do_anything(self):
        for roles in ACTION_ROLES.values():
            assert UserRole.ADMIN in roles


def test_timestamp_fields():
    assert timestamp_field(ItemStatus.SENT) == "sent_at"
    assert timestamp_field(ItemStatus.PREPARING) == "prepared_at"
    assert timestamp_field(ItemStatus.READY) == "ready_at"
    assert timestamp_field(ItemStatus.SERVED) == "served_at"
    assert timestamp_field(ItemStatus.REJECTED) is None
