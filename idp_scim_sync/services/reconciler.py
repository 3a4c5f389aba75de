"""
Reconciliation Engine

Runs one sync: fetch the identity provider's groups, members and users,
diff them against the last persisted snapshot, apply the resulting
operations to the provisioning target and persist the new snapshot.
Without a snapshot the diff runs against what the target already holds.

The snapshot is written only after every apply operation succeeded. Any
failure is raised as a SyncError tagged with its phase and entity and
leaves the stored snapshot untouched, so the next run computes the same
diff and retries the same operations.
"""

import logging
import math
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .. import __version__
from ..concurrency import DEFAULT_MAX_WORKERS, CancelToken
from ..errors import (
    PHASE_APPLY,
    PHASE_DIFF,
    PHASE_FETCH,
    PHASE_PERSIST,
    ConfigurationError,
    EntityValidationError,
    IdpScimSyncError,
    SyncCancelledError,
    SyncError,
)
from ..fingerprint import (
    build_group_members,
    build_groups_members_result,
    build_groups_result,
    build_state,
    build_users_result,
    fingerprint_group,
    fingerprint_user,
)
from ..models.identity import (
    Group,
    GroupMembers,
    GroupsMembersResult,
    GroupsResult,
    Member,
    User,
    UsersResult,
    validate_snapshot,
)
from ..models.state import State, StateResources
from .batcher import MAX_PATCH_GROUP_MEMBERS_PER_REQUEST, patch_group_operations
from .identity_provider import IdentitySource
from .provisioning import ProvisioningTarget
from .state_repository import StateRepository


logger = logging.getLogger(__name__)

GROUPS_FIRST = "groups-first"
USERS_FIRST = "users-first"
APPLY_ORDERS = (GROUPS_FIRST, USERS_FIRST)

MEMBERS_PATH = "members"


@dataclass(frozen=True)
class SyncOptions:
    """
    Per-service sync settings.

    Attributes:
        group_filters: Directory filter expressions, unioned; empty means all groups
        apply_order: Whether groups or users are created and updated first.
            Membership changes always run after both.
        dry_run: Compute and report the plan without touching the target or the state
        max_workers: Concurrent directory lookups during fetch
    """

    group_filters: Tuple[str, ...] = ()
    apply_order: str = GROUPS_FIRST
    dry_run: bool = False
    max_workers: int = DEFAULT_MAX_WORKERS

    def __post_init__(self):
        if self.apply_order not in APPLY_ORDERS:
            raise ConfigurationError(f"apply_order must be one of: {', '.join(APPLY_ORDERS)}")


@dataclass(frozen=True)
class EntityDiff:
    """
    Three-way classification of one entity kind, keyed by ipid.

    Entities in ``update`` and ``unchanged`` carry the ``scimid`` recorded
    in the prior snapshot; ``delete`` holds the prior entities.
    """

    create: Tuple[Any, ...] = ()
    update: Tuple[Any, ...] = ()
    delete: Tuple[Any, ...] = ()
    unchanged: Tuple[Any, ...] = ()

    @property
    def has_changes(self) -> bool:
        return bool(self.create or self.update or self.delete)


@dataclass(frozen=True)
class MembershipChange:
    """Members to add to and remove from one group that survives the run."""

    group: Group
    add: Tuple[Member, ...] = ()
    remove: Tuple[Member, ...] = ()


@dataclass(frozen=True)
class SyncPlan:
    groups: EntityDiff
    users: EntityDiff
    memberships: Tuple[MembershipChange, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not (self.groups.has_changes or self.users.has_changes or self.memberships)


@dataclass
class SyncReport:
    """What a run did (or, for a dry run, would do)."""

    groups_created: int = 0
    groups_updated: int = 0
    groups_deleted: int = 0
    users_created: int = 0
    users_updated: int = 0
    users_deleted: int = 0
    members_added: int = 0
    members_removed: int = 0
    patch_requests: int = 0
    dry_run: bool = False
    state_persisted: bool = False

    @classmethod
    def from_plan(cls, plan: SyncPlan, dry_run: bool = False) -> "SyncReport":
        return cls(
            groups_created=len(plan.groups.create),
            groups_updated=len(plan.groups.update),
            groups_deleted=len(plan.groups.delete),
            users_created=len(plan.users.create),
            users_updated=len(plan.users.update),
            users_deleted=len(plan.users.delete),
            members_added=sum(len(change.add) for change in plan.memberships),
            members_removed=sum(len(change.remove) for change in plan.memberships),
            dry_run=dry_run,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _diff_entities(current: Sequence[Any], prior: Sequence[Any], fingerprint: Callable[[Any], str]) -> EntityDiff:
    prior_by_ipid = {entity.ipid: entity for entity in prior}
    current_ipids = set()
    create, update, unchanged = [], [], []

    for entity in current:
        current_ipids.add(entity.ipid)
        previous = prior_by_ipid.get(entity.ipid)
        # Never created on the target, or the record was lost: create again
        if previous is None or not previous.scimid:
            create.append(entity)
            continue

        carried = entity.model_copy(update={"scimid": previous.scimid})
        current_hash = entity.hash_code or fingerprint(entity)
        prior_hash = previous.hash_code or fingerprint(previous)
        if current_hash == prior_hash:
            unchanged.append(carried)
        else:
            update.append(carried)

    delete = [entity for entity in prior if entity.ipid not in current_ipids and entity.scimid]
    return EntityDiff(create=tuple(create), update=tuple(update), delete=tuple(delete), unchanged=tuple(unchanged))


def diff_groups(current: GroupsResult, prior: GroupsResult) -> EntityDiff:
    """Classify groups into create/update/delete/unchanged by ipid and fingerprint."""
    if current.hash_code and current.hash_code == prior.hash_code and all(g.scimid for g in prior.resources):
        logger.info("Groups unchanged since the last sync")
        return EntityDiff(unchanged=tuple(prior.resources))
    return _diff_entities(current.resources, prior.resources, fingerprint_group)


def diff_users(current: UsersResult, prior: UsersResult) -> EntityDiff:
    """Classify users into create/update/delete/unchanged by ipid and fingerprint."""
    if current.hash_code and current.hash_code == prior.hash_code and all(u.scimid for u in prior.resources):
        logger.info("Users unchanged since the last sync")
        return EntityDiff(unchanged=tuple(prior.resources))
    return _diff_entities(current.resources, prior.resources, fingerprint_user)


def diff_memberships(current: GroupsMembersResult, prior: GroupsMembersResult) -> Tuple[MembershipChange, ...]:
    """
    Members to add and remove per current group.

    Groups that only exist in the prior snapshot are being deleted, so their
    members are not removed one by one. Groups whose membership fingerprint
    is unchanged produce nothing.
    """
    if current.hash_code and current.hash_code == prior.hash_code:
        logger.info("Group memberships unchanged since the last sync")
        return ()

    prior_by_group = {gm.group.ipid: gm for gm in prior.resources}
    changes = []
    for group_members in current.resources:
        previous = prior_by_group.get(group_members.group.ipid)
        if previous is not None and previous.hash_code and previous.hash_code == group_members.hash_code:
            continue

        prior_members = previous.resources if previous is not None else []
        prior_ids = {member.ipid for member in prior_members}
        current_ids = {member.ipid for member in group_members.resources}

        add = tuple(member for member in group_members.resources if member.ipid not in prior_ids)
        remove = tuple(member for member in prior_members if member.ipid not in current_ids)
        if add or remove:
            changes.append(MembershipChange(group=group_members.group, add=add, remove=remove))

    return tuple(changes)


def prune_members(groups_members: GroupsMembersResult, users: UsersResult) -> GroupsMembersResult:
    """Drop member references to users that are not in ``users``."""
    user_ids = {user.ipid for user in users.resources}
    pruned = []
    for group_members in groups_members.resources:
        members = [member for member in group_members.resources if member.ipid in user_ids]
        dropped = len(group_members.resources) - len(members)
        if dropped:
            logger.warning(f"Dropping {dropped} members of group {group_members.group.name} without a user profile")
        pruned.append(GroupMembers(group=group_members.group, resources=members))
    return build_groups_members_result(pruned)


class _ExistingRecords:
    """Target records indexed by each adoption key, tried in order."""

    def __init__(self, records: Sequence[Any], keys: Sequence[Callable[[Any], Optional[str]]]):
        self._keys = keys
        self._indexes = [{key(record): record for record in records if key(record)} for key in keys]

    def find(self, entity: Any) -> Optional[Any]:
        for key, index in zip(self._keys, self._indexes):
            value = key(entity)
            if value and value in index:
                return index[value]
        return None


def prior_from_target_records(
    current: Sequence[Any],
    records: Sequence[Any],
    keys: Sequence[Callable[[Any], Optional[str]]],
) -> List[Any]:
    """
    Target records as prior entities for a diff.

    A record matching a current entity by one of ``keys`` takes that
    entity's ipid, so the diff updates it in place. Any other record keeps
    its externalId as ipid, or gets one derived from its SCIM id, and the
    diff deletes it.
    """
    existing = _ExistingRecords(records, keys)
    adopted: Dict[str, Any] = {}
    for entity in current:
        match = existing.find(entity)
        if match is not None and match.scimid not in adopted:
            adopted[match.scimid] = match.model_copy(update={"ipid": entity.ipid})

    current_ipids = {entity.ipid for entity in current}
    prior = []
    for record in records:
        if record.scimid in adopted:
            prior.append(adopted[record.scimid])
        elif record.ipid and record.ipid not in current_ipids:
            prior.append(record)
        else:
            prior.append(record.model_copy(update={"ipid": f"scim:{record.scimid}"}))
    return prior


class SyncService:
    """
    Orchestrates fetch, diff, apply and persist for the "groups" sync method.

    Runs against the same state key must not overlap; the repository's
    single-object get/put is the only serialization point.

    Example usage:
        service = SyncService(identity, target, repository, SyncOptions(group_filters=("name:Admin*",)))
        report = service.reconcile()
    """

    def __init__(
        self,
        identity: IdentitySource,
        target: ProvisioningTarget,
        repository: StateRepository,
        options: Optional[SyncOptions] = None,
    ):
        if identity is None:
            raise ConfigurationError("identity source cannot be None")
        if target is None:
            raise ConfigurationError("provisioning target cannot be None")
        if repository is None:
            raise ConfigurationError("state repository cannot be None")

        self.identity = identity
        self.target = target
        self.repository = repository
        self.options = options or SyncOptions()

    def reconcile(
        self,
        group_filters: Optional[Sequence[str]] = None,
        token: Optional[CancelToken] = None,
    ) -> SyncReport:
        """
        Run one reconciliation.

        Args:
            group_filters: Overrides the configured filters for this run
            token: Cancellation signal and deadline; checked before every
                adapter call and before persisting

        Returns:
            SyncReport with the counts of applied operations

        Raises:
            SyncError: Any failure, tagged with phase and entity
            SyncCancelledError: The token was cancelled or its deadline passed
        """
        token = token or CancelToken()
        filters = list(group_filters if group_filters is not None else self.options.group_filters)

        current = self._fetch(filters, token)
        prior = self._load_state(token)
        self._validate(current)

        from_target = prior.is_first_sync and not self.options.dry_run
        if from_target:
            prior = self._prior_from_target(current, token)
        plan = self._plan(current, prior)

        report = SyncReport.from_plan(plan, dry_run=self.options.dry_run)
        if self.options.dry_run:
            report.patch_requests = sum(
                math.ceil(len(change.add) / MAX_PATCH_GROUP_MEMBERS_PER_REQUEST)
                + math.ceil(len(change.remove) / MAX_PATCH_GROUP_MEMBERS_PER_REQUEST)
                for change in plan.memberships
            )
            logger.info(f"Dry run, nothing applied: {report.to_dict()}")
            return report

        if plan.is_empty:
            logger.info("Target already matches the identity provider, nothing to apply")

        state = self._apply(plan, current, prior, token, report, adopt=not from_target)

        self._step(PHASE_PERSIST, "state", token, self.repository.put, state)
        report.state_persisted = True
        logger.info(
            f"Sync completed: {len(state.groups.resources)} groups, {len(state.users.resources)} users, "
            f"last sync {state.last_sync}"
        )
        return report

    def _step(self, phase: str, entity: str, token: CancelToken, func: Callable[..., Any], *args: Any) -> Any:
        """Call an adapter, checking the token first and tagging any failure with phase and entity."""
        token.raise_if_cancelled(phase)
        try:
            return func(*args)
        except (SyncError, SyncCancelledError):
            raise
        except IdpScimSyncError as exc:
            raise SyncError(phase, entity, exc) from exc
        except Exception as exc:
            logger.exception(f"Unexpected error in {phase} phase for {entity}")
            raise SyncError(phase, entity, exc) from exc

    def _fetch(self, filters: List[str], token: CancelToken) -> StateResources:
        logger.info(f"Getting identity provider data, group filters: {filters}")
        groups = self._step(PHASE_FETCH, "groups", token, self.identity.get_groups, filters, token)
        logger.info(f"Retrieved {groups.items} groups from the identity provider")

        groups_members = self._step(
            PHASE_FETCH, "group members", token, self.identity.get_groups_members, groups, token
        )
        users = self._step(
            PHASE_FETCH, "users", token, self.identity.get_users_by_groups_members, groups_members, token
        )
        logger.info(f"Retrieved {users.items} users from the identity provider")

        return StateResources(groups=groups, users=users, groups_members=prune_members(groups_members, users))

    def _load_state(self, token: CancelToken) -> State:
        state, found = self._step(PHASE_FETCH, "state", token, self.repository.get)
        if not found:
            logger.warning("No state found in the state repository, diffing against the target")
            return State()
        logger.info(f"Loaded state from last sync at {state.last_sync or 'never'}")
        return state

    def _validate(self, current: StateResources) -> None:
        try:
            validate_snapshot(current.groups, current.users, current.groups_members)
        except EntityValidationError as exc:
            raise SyncError(PHASE_DIFF, "identity provider snapshot", exc) from exc

    def _prior_from_target(self, current: StateResources, token: CancelToken) -> State:
        """
        Read the target's groups, users and memberships as the prior side of a first diff.

        Target records are matched to directory entities by externalId, then by
        name, and updated in place. Unmatched records are deleted, and members
        of matched groups that the directory does not list are removed.
        """
        logger.info("No state to diff against, reading groups, users and memberships from the target")
        target_groups = self._step(PHASE_FETCH, "target groups", token, self.target.list_groups)
        target_users = self._step(PHASE_FETCH, "target users", token, self.target.list_users)

        groups = prior_from_target_records(current.groups.resources, target_groups, (lambda g: g.ipid, lambda g: g.name))
        users = prior_from_target_records(current.users.resources, target_users, (lambda u: u.ipid, lambda u: u.user_name))

        users_by_scimid = {user.scimid: user for user in users}
        current_group_ipids = {group.ipid for group in current.groups.resources}
        groups_members = []
        for group in groups:
            if group.ipid not in current_group_ipids:
                continue
            member_ids = self._step(
                PHASE_FETCH, f"members of target group {group.name}", token, self.target.list_group_members, group, users
            )
            members = [
                Member(ipid=users_by_scimid[scimid].ipid, scimid=scimid, email=users_by_scimid[scimid].primary_email)
                for scimid in member_ids
                if scimid in users_by_scimid
            ]
            groups_members.append(build_group_members(group, members))

        logger.info(f"Found {len(target_groups)} groups and {len(target_users)} users on the target")
        return build_state(
            build_groups_result(groups),
            build_users_result(users),
            build_groups_members_result(groups_members),
        )

    def _plan(self, current: StateResources, prior: State) -> SyncPlan:
        plan = SyncPlan(
            groups=diff_groups(current.groups, prior.groups),
            users=diff_users(current.users, prior.users),
            memberships=diff_memberships(current.groups_members, prior.groups_members),
        )
        logger.info(
            f"Plan: groups +{len(plan.groups.create)} ~{len(plan.groups.update)} -{len(plan.groups.delete)}, "
            f"users +{len(plan.users.create)} ~{len(plan.users.update)} -{len(plan.users.delete)}, "
            f"{len(plan.memberships)} groups with membership changes"
        )
        return plan

    def _apply(
        self,
        plan: SyncPlan,
        current: StateResources,
        prior: State,
        token: CancelToken,
        report: SyncReport,
        adopt: bool = True,
    ) -> State:
        if self.options.apply_order == USERS_FIRST:
            users = self._upsert_users(plan.users, token, adopt)
            groups = self._upsert_groups(plan.groups, token, adopt)
        else:
            groups = self._upsert_groups(plan.groups, token, adopt)
            users = self._upsert_users(plan.users, token, adopt)

        prior_users = {user.ipid: user for user in prior.users.resources}
        self._remove_members(plan.memberships, groups, users, prior_users, token, report)
        self._add_members(plan.memberships, groups, users, token, report)

        if plan.groups.delete:
            logger.warning(f"Deleting {len(plan.groups.delete)} groups")
        for group in plan.groups.delete:
            self._step(PHASE_APPLY, f"group {group.name} ({group.ipid})", token, self.target.delete_group, group)

        if plan.users.delete:
            logger.warning(f"Deleting {len(plan.users.delete)} users")
        for user in plan.users.delete:
            self._step(PHASE_APPLY, f"user {user.user_name} ({user.ipid})", token, self.target.delete_user, user)

        return self._new_state(current, groups, users)

    def _upsert_groups(self, diff: EntityDiff, token: CancelToken, adopt: bool = True) -> Dict[str, Group]:
        resolved = {group.ipid: group for group in diff.unchanged}

        if diff.create:
            logger.warning(f"Creating {len(diff.create)} groups")
            existing = _ExistingRecords(
                self._step(PHASE_APPLY, "target groups", token, self.target.list_groups) if adopt else [],
                keys=(lambda g: g.ipid, lambda g: g.name),
            )
            for group in diff.create:
                entity = f"group {group.name} ({group.ipid})"
                match = existing.find(group)
                if match is not None:
                    logger.info(f"Group {group.name} already exists on the target as {match.scimid}, replacing it")
                    adopted = group.model_copy(update={"scimid": match.scimid})
                    resolved[group.ipid] = self._step(PHASE_APPLY, entity, token, self.target.update_group, adopted)
                else:
                    resolved[group.ipid] = self._step(PHASE_APPLY, entity, token, self.target.create_group, group)

        if diff.update:
            logger.warning(f"Updating {len(diff.update)} groups")
        for group in diff.update:
            entity = f"group {group.name} ({group.ipid})"
            resolved[group.ipid] = self._step(PHASE_APPLY, entity, token, self.target.update_group, group)

        return resolved

    def _upsert_users(self, diff: EntityDiff, token: CancelToken, adopt: bool = True) -> Dict[str, User]:
        resolved = {user.ipid: user for user in diff.unchanged}

        if diff.create:
            logger.warning(f"Creating {len(diff.create)} users")
            existing = _ExistingRecords(
                self._step(PHASE_APPLY, "target users", token, self.target.list_users) if adopt else [],
                keys=(lambda u: u.ipid, lambda u: u.user_name),
            )
            for user in diff.create:
                entity = f"user {user.user_name} ({user.ipid})"
                match = existing.find(user)
                if match is not None:
                    logger.info(f"User {user.user_name} already exists on the target as {match.scimid}, replacing it")
                    adopted = user.model_copy(update={"scimid": match.scimid})
                    resolved[user.ipid] = self._step(PHASE_APPLY, entity, token, self.target.update_user, adopted)
                else:
                    resolved[user.ipid] = self._step(PHASE_APPLY, entity, token, self.target.create_user, user)

        if diff.update:
            logger.warning(f"Updating {len(diff.update)} users")
        for user in diff.update:
            entity = f"user {user.user_name} ({user.ipid})"
            resolved[user.ipid] = self._step(PHASE_APPLY, entity, token, self.target.update_user, user)

        return resolved

    def _remove_members(
        self,
        changes: Sequence[MembershipChange],
        groups: Dict[str, Group],
        users: Dict[str, User],
        prior_users: Dict[str, User],
        token: CancelToken,
        report: SyncReport,
    ) -> None:
        for change in changes:
            if not change.remove:
                continue
            values = []
            for member in change.remove:
                known = prior_users.get(member.ipid) or users.get(member.ipid)
                scimid = member.scimid or (known.scimid if known else None)
                if not scimid:
                    logger.warning(f"Member {member.ipid} of group {change.group.name} was never provisioned, skipping")
                    continue
                values.append({"value": scimid})
            self._send_patches("remove", groups[change.group.ipid], values, token, report)

    def _add_members(
        self,
        changes: Sequence[MembershipChange],
        groups: Dict[str, Group],
        users: Dict[str, User],
        token: CancelToken,
        report: SyncReport,
    ) -> None:
        for change in changes:
            if not change.add:
                continue
            values = [{"value": users[member.ipid].scimid} for member in change.add]
            self._send_patches("add", groups[change.group.ipid], values, token, report)

    def _send_patches(self, op: str, group: Group, values: List[dict], token: CancelToken, report: SyncReport) -> None:
        requests = patch_group_operations(op, MEMBERS_PATH, values, group_id=group.scimid, display_name=group.name)
        for request in requests:
            entity = f"{op} {len(request.values)} members of group {group.name} ({group.ipid})"
            self._step(PHASE_APPLY, entity, token, self.target.patch_group, request)
            report.patch_requests += 1

    def _new_state(self, current: StateResources, groups: Dict[str, Group], users: Dict[str, User]) -> State:
        """Current entities carrying the target ids resolved during apply."""
        groups_members = [
            GroupMembers(
                group=groups[gm.group.ipid],
                resources=[member.model_copy(update={"scimid": users[member.ipid].scimid}) for member in gm.resources],
            )
            for gm in current.groups_members.resources
        ]
        return build_state(
            build_groups_result(groups[group.ipid] for group in current.groups.resources),
            build_users_result(users[user.ipid] for user in current.users.resources),
            build_groups_members_result(groups_members),
            code_version=__version__,
            last_sync=datetime.now(timezone.utc).isoformat(timespec="seconds"),
        )
