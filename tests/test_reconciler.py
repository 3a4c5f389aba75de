"""
Test file for the reconciliation engine

Tests the fetch, diff, apply and persist cycle against an in-memory target:
- First run and idempotent re-runs
- Three-way diff of groups and users
- Membership batching, ordering and skipped removals
- Persistence safety on failures and cancellation
"""

from unittest.mock import Mock

import pytest

from idp_scim_sync.concurrency import CancelToken
from idp_scim_sync.errors import PHASE_APPLY, PHASE_DIFF, PHASE_FETCH, PHASE_PERSIST, StateReadError, StateWriteError, SyncCancelledError, SyncError
from idp_scim_sync.fingerprint import build_groups_members_result, build_groups_result, build_users_result
from idp_scim_sync.models.identity import GroupMembers, GroupsMembersResult, Member, UsersResult
from idp_scim_sync.services.reconciler import (
    USERS_FIRST,
    SyncOptions,
    SyncService,
    diff_groups,
    diff_memberships,
    prune_members,
)

from .conftest import FakeIdentity, FakeTarget, make_group, make_user


def _service(identity, target, repository, **options):
    return SyncService(identity, target, repository, SyncOptions(**options))


class TestFirstRun:
    """Test class for runs without a stored state"""

    def test_everything_is_created(self, directory, fake_target, state_repository):
        report = _service(directory, fake_target, state_repository).reconcile()

        assert report.groups_created == 2
        assert report.users_created == 3
        assert report.members_added == 4
        assert report.groups_updated == report.users_updated == 0
        assert report.groups_deleted == report.users_deleted == 0
        assert fake_target.member_names("Admins") == {"alice@example.com", "bob@example.com"}
        assert fake_target.member_names("Developers") == {"bob@example.com", "carol@example.com"}

    def test_state_is_persisted_with_target_ids(self, directory, fake_target, state_repository):
        _service(directory, fake_target, state_repository).reconcile()

        state, found = state_repository.get()
        assert found
        assert not state.is_first_sync
        assert state.hash_code
        assert all(group.scimid for group in state.groups.resources)
        assert all(user.scimid for user in state.users.resources)
        assert all(member.scimid for gm in state.groups_members.resources for member in gm.resources)

    def test_membership_patches_come_after_creates(self, directory, fake_target, state_repository):
        _service(directory, fake_target, state_repository).reconcile()

        ops = [op for op, _ in fake_target.mutations()]
        last_create = max(i for i, op in enumerate(ops) if op.startswith("create"))
        first_patch = min(i for i, op in enumerate(ops) if op.endswith("_members"))
        assert last_create < first_patch

    def test_users_first_order(self, directory, fake_target, state_repository):
        _service(directory, fake_target, state_repository, apply_order=USERS_FIRST).reconcile()

        ops = [op for op, _ in fake_target.mutations()]
        assert ops.index("create_user") < ops.index("create_group")

    def test_existing_target_records_are_adopted(self, directory, fake_target, state_repository):
        # Created by hand with another externalId, matched by name
        existing = fake_target.create_group(make_group("legacy-admins", "Admins"))
        fake_target.calls.clear()

        report = _service(directory, fake_target, state_repository).reconcile()

        assert ("create_group", "admins") not in fake_target.calls
        assert ("update_group", "admins") in fake_target.calls
        assert (report.groups_created, report.groups_updated, report.groups_deleted) == (1, 1, 0)
        state, _ = state_repository.get()
        admins = next(g for g in state.groups.resources if g.ipid == "admins")
        assert admins.scimid == existing.scimid

    def test_first_run_converges_with_existing_target(self, directory, fake_target, state_repository):
        admins = fake_target.create_group(make_group("admins", "Admins"))
        stale = fake_target.create_group(make_group("contractors", "Contractors"))
        mallory = fake_target.create_user(make_user("mallory"))
        alice = fake_target.create_user(make_user("alice"))
        fake_target.members[admins.scimid] = {mallory.scimid, alice.scimid}
        fake_target.calls.clear()

        report = _service(directory, fake_target, state_repository).reconcile()

        assert fake_target.member_names("Admins") == {"alice@example.com", "bob@example.com"}
        assert stale.scimid not in fake_target.groups
        assert mallory.scimid not in fake_target.users
        assert ("create_user", "alice") not in fake_target.calls
        assert (report.groups_created, report.groups_deleted) == (1, 1)
        assert (report.users_created, report.users_deleted) == (2, 1)
        assert (report.members_added, report.members_removed) == (3, 1)

        fake_target.calls.clear()
        _service(directory, fake_target, state_repository).reconcile()
        assert fake_target.calls == []

    def test_target_is_not_read_on_dry_run(self, directory, fake_target):
        fake_target.create_group(make_group("contractors", "Contractors"))
        fake_target.calls.clear()
        repository = Mock()
        repository.get.return_value = (None, False)

        report = _service(directory, fake_target, repository, dry_run=True).reconcile()

        assert report.groups_deleted == 0
        assert fake_target.calls == []


class TestIdempotence:
    """Test class for re-running without changes"""

    def test_second_run_issues_no_operations(self, directory, fake_target, state_repository):
        service = _service(directory, fake_target, state_repository)
        service.reconcile()
        fake_target.calls.clear()

        report = service.reconcile()

        assert fake_target.calls == []
        assert report.to_dict() == {
            "groups_created": 0,
            "groups_updated": 0,
            "groups_deleted": 0,
            "users_created": 0,
            "users_updated": 0,
            "users_deleted": 0,
            "members_added": 0,
            "members_removed": 0,
            "patch_requests": 0,
            "dry_run": False,
            "state_persisted": True,
        }

    def test_state_is_stable_across_runs(self, directory, fake_target, state_repository):
        service = _service(directory, fake_target, state_repository)
        service.reconcile()
        first, _ = state_repository.get()

        service.reconcile()
        second, _ = state_repository.get()

        assert first.hash_code == second.hash_code
        assert first.resources == second.resources


class TestThreeWayDiff:
    """Test class for create/update/delete classification"""

    def test_groups_removed_updated_added(self, fake_target, state_repository):
        alice = make_user("alice")
        prior = FakeIdentity(
            groups=[make_group("a", "A"), make_group("b", "B")],
            users=[alice],
            members={"a": ["alice"], "b": ["alice"]},
        )
        _service(prior, fake_target, state_repository).reconcile()
        fake_target.calls.clear()

        current = FakeIdentity(
            groups=[make_group("b", "B renamed"), make_group("c", "C")],
            users=[alice],
            members={"b": ["alice"], "c": ["alice"]},
        )
        report = _service(current, fake_target, state_repository).reconcile()

        group_ops = [call for call in fake_target.mutations() if call[0].endswith("_group")]
        assert sorted(group_ops) == [("create_group", "c"), ("delete_group", "a"), ("update_group", "b")]
        assert (report.groups_created, report.groups_updated, report.groups_deleted) == (1, 1, 1)

    def test_users_removed_updated_added(self, fake_target, state_repository):
        prior = FakeIdentity(
            groups=[make_group("g", "G")],
            users=[make_user("a"), make_user("b")],
            members={"g": ["a", "b"]},
        )
        _service(prior, fake_target, state_repository).reconcile()
        fake_target.calls.clear()

        current = FakeIdentity(
            groups=[make_group("g", "G")],
            users=[make_user("b", display_name="Bob Updated"), make_user("c")],
            members={"g": ["b", "c"]},
        )
        report = _service(current, fake_target, state_repository).reconcile()

        user_ops = [call for call in fake_target.mutations() if call[0].endswith("_user")]
        assert sorted(user_ops) == [("create_user", "c"), ("delete_user", "a"), ("update_user", "b")]
        assert (report.users_created, report.users_updated, report.users_deleted) == (1, 1, 1)
        assert (report.members_added, report.members_removed) == (1, 1)
        assert fake_target.member_names("G") == {"b@example.com", "c@example.com"}

    def test_member_removal_happens_before_user_delete(self, fake_target, state_repository):
        prior = FakeIdentity(groups=[make_group("g", "G")], users=[make_user("a"), make_user("b")], members={"g": ["a", "b"]})
        _service(prior, fake_target, state_repository).reconcile()
        fake_target.calls.clear()

        current = FakeIdentity(groups=[make_group("g", "G")], users=[make_user("a")], members={"g": ["a"]})
        _service(current, fake_target, state_repository).reconcile()

        ops = [op for op, _ in fake_target.mutations()]
        assert ops == ["remove_members", "delete_user"]

    def test_deleted_group_skips_member_removal(self, fake_target, state_repository):
        prior = FakeIdentity(
            groups=[make_group("keep", "Keep"), make_group("gone", "Gone")],
            users=[make_user("a")],
            members={"keep": ["a"], "gone": ["a"]},
        )
        _service(prior, fake_target, state_repository).reconcile()
        fake_target.calls.clear()

        current = FakeIdentity(groups=[make_group("keep", "Keep")], users=[make_user("a")], members={"keep": ["a"]})
        _service(current, fake_target, state_repository).reconcile()

        assert fake_target.mutations() == [("delete_group", "gone")]

    def test_diff_groups_carries_prior_scimid(self):
        prior = build_groups_result([make_group("g1", "Old").model_copy(update={"scimid": "s-1"})])
        current = build_groups_result([make_group("g1", "New")])

        diff = diff_groups(current, prior)

        assert [g.scimid for g in diff.update] == ["s-1"]
        assert diff.update[0].name == "New"

    def test_prior_entry_without_scimid_is_recreated(self):
        prior = build_groups_result([make_group("g1")])
        diff = diff_groups(build_groups_result([make_group("g1")]), prior)

        assert [g.ipid for g in diff.create] == ["g1"]
        assert diff.unchanged == ()


class TestMemberships:
    """Test class for membership diffs and batching"""

    def test_empty_group_produces_no_membership_operations(self, fake_target, state_repository):
        identity = FakeIdentity(groups=[make_group("empty", "Empty")], users=[], members={})

        service = _service(identity, fake_target, state_repository)
        first = service.reconcile()
        second = service.reconcile()

        assert first.members_added == first.members_removed == first.patch_requests == 0
        assert second.members_added == second.members_removed == second.patch_requests == 0
        assert not any(op.endswith("_members") for op, _ in fake_target.calls)

    def test_large_membership_is_batched(self, fake_target, state_repository):
        users = [make_user(f"user{i:03d}") for i in range(230)]
        identity = FakeIdentity(groups=[make_group("big", "Big")], users=users, members={"big": [u.ipid for u in users]})

        report = _service(identity, fake_target, state_repository).reconcile()

        assert report.patch_requests == 3
        assert [op for op, _ in fake_target.calls].count("add_members") == 3
        assert len(fake_target.member_names("Big")) == 230

    def test_diff_memberships(self):
        group = make_group("g")
        prior = build_groups_members_result([GroupMembers(group=group, resources=[Member(ipid="a"), Member(ipid="b")])])
        current = build_groups_members_result([GroupMembers(group=group, resources=[Member(ipid="b"), Member(ipid="c")])])

        (change,) = diff_memberships(current, prior)

        assert [m.ipid for m in change.add] == ["c"]
        assert [m.ipid for m in change.remove] == ["a"]

    def test_prune_members_without_profile(self):
        group = make_group("g")
        members = build_groups_members_result([GroupMembers(group=group, resources=[Member(ipid="a"), Member(ipid="ghost")])])

        pruned = prune_members(members, build_users_result([make_user("a")]))

        assert [m.ipid for m in pruned.resources[0].resources] == ["a"]


class TestFailures:
    """Test class for error tagging and persistence safety"""

    def test_apply_failure_does_not_persist(self, directory):
        target = FakeTarget(fail_on={"create_group:devs"})
        repository = Mock()
        repository.get.return_value = (None, False)

        with pytest.raises(SyncError) as excinfo:
            _service(directory, target, repository).reconcile()

        assert excinfo.value.phase == PHASE_APPLY
        assert "devs" in excinfo.value.entity
        assert ("create_group", "admins") in target.calls
        repository.put.assert_not_called()

    def test_next_run_retries_the_same_diff(self, directory, state_repository):
        failing = FakeTarget(fail_on={"create_group:devs"})
        with pytest.raises(SyncError):
            _service(directory, failing, state_repository).reconcile()
        assert state_repository.get() == (None, False)

        # The target kept the group created before the failure, it is matched on retry
        failing.fail_on.clear()
        failing.calls.clear()
        report = _service(directory, failing, state_repository).reconcile()

        assert report.groups_created == 1
        assert ("create_group", "admins") not in failing.calls
        assert ("create_group", "devs") in failing.calls
        assert len([g for g in failing.groups.values() if g.name == "Admins"]) == 1

    def test_fetch_failure_is_tagged(self, fake_target, state_repository):
        identity = Mock()
        identity.get_groups.side_effect = RuntimeError("directory down")

        with pytest.raises(SyncError) as excinfo:
            SyncService(identity, fake_target, state_repository).reconcile()

        assert excinfo.value.phase == PHASE_FETCH
        assert excinfo.value.entity == "groups"
        assert isinstance(excinfo.value.__cause__, RuntimeError)

    def test_state_read_failure_aborts_before_apply(self, directory, fake_target):
        repository = Mock()
        repository.get.side_effect = StateReadError("access denied")

        with pytest.raises(SyncError) as excinfo:
            _service(directory, fake_target, repository).reconcile()

        assert excinfo.value.phase == PHASE_FETCH
        assert fake_target.calls == []
        repository.put.assert_not_called()

    def test_state_write_failure_is_tagged(self, directory, fake_target):
        repository = Mock()
        repository.get.return_value = (None, False)
        repository.put.side_effect = StateWriteError("bucket gone")

        with pytest.raises(SyncError) as excinfo:
            _service(directory, fake_target, repository).reconcile()

        assert excinfo.value.phase == PHASE_PERSIST
        repository.put.assert_called_once()

    def test_invalid_snapshot_fails_in_diff(self, fake_target, state_repository):
        identity = Mock()
        identity.get_groups.return_value = build_groups_result([make_group("g"), make_group("g", "dup")])
        identity.get_groups_members.return_value = GroupsMembersResult()
        identity.get_users_by_groups_members.return_value = UsersResult()

        with pytest.raises(SyncError) as excinfo:
            SyncService(identity, fake_target, state_repository).reconcile()

        assert excinfo.value.phase == PHASE_DIFF
        assert fake_target.calls == []

    def test_cancelled_token_prevents_persist(self, directory, state_repository):
        token = CancelToken()
        target = FakeTarget()
        real_create = target.create_user

        def create_and_cancel(user):
            token.cancel()
            return real_create(user)

        target.create_user = create_and_cancel

        with pytest.raises(SyncCancelledError):
            _service(directory, target, state_repository).reconcile(token=token)

        assert state_repository.get() == (None, False)

    def test_expired_deadline_stops_before_fetch(self, directory, fake_target, state_repository):
        identity = Mock(wraps=directory)

        with pytest.raises(SyncCancelledError):
            _service(identity, fake_target, state_repository).reconcile(token=CancelToken(deadline=0))

        identity.get_groups.assert_not_called()


class TestDryRun:
    """Test class for planning without applying"""

    def test_dry_run_reports_without_changes(self, directory, fake_target):
        repository = Mock()
        repository.get.return_value = (None, False)

        report = _service(directory, fake_target, repository, dry_run=True).reconcile()

        assert report.dry_run
        assert report.groups_created == 2
        assert report.members_added == 4
        assert report.patch_requests == 2
        assert not report.state_persisted
        assert fake_target.calls == []
        repository.put.assert_not_called()

    def test_group_filters_are_passed_through(self, fake_target, state_repository):
        identity = Mock(wraps=FakeIdentity())

        _service(identity, fake_target, state_repository, group_filters=("name:Admin*",)).reconcile()
        identity.get_groups.assert_called_once()
        assert identity.get_groups.call_args[0][0] == ["name:Admin*"]

        _service(identity, fake_target, state_repository).reconcile(group_filters=["email:dev*"])
        assert identity.get_groups.call_args[0][0] == ["email:dev*"]
