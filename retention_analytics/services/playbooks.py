"""
Retention Playbook Engine.

Runs templated retention sequences (calls, emails, meetings, offers, content,
WhatsApp messages) for at-risk clients and tracks each step to completion.

Rules:
- A client has at most one ACTIVE playbook instance. Starting a second one
  raises InvariantViolation; once the instance completes or is abandoned a
  new one may start.
- Starting a playbook persists the instance, one RetentionAction per template
  step (due_date = start date + deadline_days) and a follow-up lead for the
  client's assessor as a single unit. If any part fails nothing is persisted.
- An action moves from PENDING to COMPLETED or SKIPPED exactly once.
- The instance completes automatically when every action is terminal.
- The next action is the lowest-order pending action.

Mutations for one client are serialized by a per-client asyncio.Lock held by
the engine; the PostgreSQL store additionally locks the client row and
relies on a partial unique index, so the invariant also holds across
processes.

Usage:
    engine = RetentionPlaybookEngine(store)
    started = await engine.start_playbook("cli_042", "pb_critical")
    await engine.complete_action(started.actions[0].id, notes="Client reached")
    upcoming = await engine.next_action("cli_042")
"""

import asyncio
import logging
import weakref
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, List, Optional
from uuid import uuid4

from retention_analytics.core.config import Settings, get_settings
from retention_analytics.core.exceptions import InvariantViolation, NotFound
from retention_analytics.models import (
    ActivePlaybook,
    ClientRecord,
    FollowUpLeadCreate,
    HealthClassification,
    PlaybookActionType,
    PlaybookInstance,
    PlaybookInstanceStatus,
    PlaybookTemplate,
    RetentionAction,
    RetentionActionStatus,
)
from retention_analytics.services.store import CrmStore


logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def build_playbook_actions(
    template: PlaybookTemplate,
    instance: PlaybookInstance,
    assigned_to: Optional[str],
) -> List[RetentionAction]:
    """One pending action per template step, due deadline_days after the start."""
    start_day = instance.started_at.date()
    return [
        RetentionAction(
            id=f"act_{uuid4().hex}",
            instance_id=instance.id,
            client_id=instance.client_id,
            order=step.order,
            action_type=PlaybookActionType(step.action_type),
            description=step.description,
            offer_details=getattr(step, "offer_details", None),
            due_date=start_day + timedelta(days=step.deadline_days),
            status=RetentionActionStatus.PENDING,
            assigned_to=assigned_to,
        )
        for step in template.steps
    ]


def build_follow_up_lead(
    client: ClientRecord,
    template: PlaybookTemplate,
    first_action: RetentionAction,
    created_at: datetime,
) -> FollowUpLeadCreate:
    """Lead placed in the assessor's pipeline when a playbook starts."""
    return FollowUpLeadCreate(
        name=f"Retention: {client.name}",
        assessor_id=client.assessor_id,
        observations=(
            f"Retention playbook '{template.name}' started for client {client.name}. "
            f"First step ({first_action.action_type.value}) due {first_action.due_date.isoformat()}: "
            f"{first_action.description}"
        ),
        source_client_id=client.id,
        created_at=created_at,
    )


def pending_in_order(actions: List[RetentionAction]) -> List[RetentionAction]:
    return sorted(
        (a for a in actions if a.status is RetentionActionStatus.PENDING),
        key=lambda a: a.order,
    )


class RetentionPlaybookEngine:
    """
    Starts and advances retention playbooks against a CrmStore.

    One engine instance should be shared per process so its per-client locks
    serialize every mutation for a client.
    """

    def __init__(self, store: CrmStore, settings: Optional[Settings] = None) -> None:
        self._store = store
        self._settings = settings or get_settings()
        # Entries vanish once no caller holds or awaits the lock.
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    @asynccontextmanager
    async def _client_lock(self, client_id: str) -> AsyncIterator[None]:
        lock = self._locks.get(client_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[client_id] = lock
        async with lock:
            yield

    # =========================================================================
    # Templates
    # =========================================================================

    async def list_retention_playbook_templates(
        self,
        classification: Optional[HealthClassification] = None,
    ) -> List[PlaybookTemplate]:
        """Active templates, optionally only those targeting one classification."""
        return await self._store.list_playbook_templates(classification, active_only=True)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start_playbook(
        self,
        client_id: str,
        template_id: str,
        assigned_to: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ActivePlaybook:
        """
        Start a playbook for a client.

        Args:
            client_id: Client to retain.
            template_id: Template to instantiate.
            assigned_to: Owner of the actions (default: the client's assessor).
            now: Start timestamp (default: now, UTC).

        Returns:
            ActivePlaybook with the new instance, its actions and the first step.

        Raises:
            NotFound: Unknown client or template.
            InvariantViolation: Inactive template, or the client already has
                an active playbook.
        """
        client = await self._store.get_client(client_id)
        if client is None:
            raise NotFound("client", client_id)
        template = await self._store.get_playbook_template(template_id)
        if template is None:
            raise NotFound("playbook template", template_id)
        if not template.is_active:
            raise InvariantViolation(f"Playbook template '{template.name}' is inactive")

        async with self._client_lock(client_id):
            existing = await self._store.get_active_instance(client_id)
            if existing is not None:
                logger.warning(
                    f"Rejected playbook '{template.name}' for {client_id}: "
                    f"'{existing.template_name}' is still active"
                )
                raise InvariantViolation(
                    f"Client '{client_id}' already has an active playbook '{existing.template_name}'"
                )

            started_at = now or _now()
            churn_event = await self._store.get_pending_churn_event(client_id)
            instance = PlaybookInstance(
                id=f"pbi_{uuid4().hex}",
                client_id=client_id,
                template_id=template.id,
                template_name=template.name,
                churn_event_id=churn_event.id if churn_event else None,
                follow_up_lead_id=f"lead_{uuid4().hex}",
                assigned_to=assigned_to or client.assessor_id,
                started_at=started_at,
                status=PlaybookInstanceStatus.ACTIVE,
            )
            actions = build_playbook_actions(template, instance, instance.assigned_to)
            lead = build_follow_up_lead(client, template, actions[0], started_at)

            instance = await self._store.create_playbook_instance(instance, actions, lead)

        logger.info(
            f"Started playbook '{template.name}' for {client_id} with {len(actions)} actions"
        )
        return ActivePlaybook(instance=instance, actions=actions, next_action=actions[0])

    async def complete_action(
        self,
        action_id: str,
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> RetentionAction:
        """Mark a pending action completed."""
        return await self._resolve(action_id, RetentionActionStatus.COMPLETED, notes, now)

    async def skip_action(
        self,
        action_id: str,
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> RetentionAction:
        """Mark a pending action skipped."""
        return await self._resolve(action_id, RetentionActionStatus.SKIPPED, notes, now)

    async def _resolve(
        self,
        action_id: str,
        status: RetentionActionStatus,
        notes: Optional[str],
        now: Optional[datetime],
    ) -> RetentionAction:
        action = await self._store.get_action(action_id)
        if action is None:
            raise NotFound("retention action", action_id)

        async with self._client_lock(action.client_id):
            resolved = await self._store.resolve_action(action_id, status, now or _now(), notes)
            if resolved is None:
                current = await self._store.get_action(action_id)
                current_status = current.status.value if current else "unknown"
                raise InvariantViolation(
                    f"Action '{action_id}' is already {current_status}; only pending actions can be resolved"
                )

            instance = await self._store.get_instance(resolved.instance_id)

        if instance is not None and instance.status is PlaybookInstanceStatus.COMPLETED:
            logger.info(f"Playbook '{instance.template_name}' completed for {instance.client_id}")
        return resolved

    async def abandon_playbook(
        self,
        client_id: str,
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> PlaybookInstance:
        """
        Abandon the client's active playbook, skipping its pending actions.

        Raises:
            NotFound: The client has no active playbook.
        """
        async with self._client_lock(client_id):
            active = await self._store.get_active_instance(client_id)
            if active is None:
                raise NotFound("active playbook for client", client_id)
            closed = await self._store.abandon_instance(active.id, now or _now(), notes)
            if closed is None:
                raise InvariantViolation(f"Playbook instance '{active.id}' is no longer active")

        logger.info(f"Abandoned playbook '{closed.template_name}' for {client_id}")
        return closed

    # =========================================================================
    # Queries
    # =========================================================================

    async def get_active_playbook(self, client_id: str) -> Optional[ActivePlaybook]:
        """The client's active instance with its actions, or None."""
        instance = await self._store.get_active_instance(client_id)
        if instance is None:
            return None
        actions = await self._store.list_instance_actions(instance.id)
        pending = pending_in_order(actions)
        return ActivePlaybook(
            instance=instance,
            actions=sorted(actions, key=lambda a: a.order),
            next_action=pending[0] if pending else None,
        )

    async def next_action(self, client_id: str) -> Optional[RetentionAction]:
        """Lowest-order pending action of the client's active playbook, or None."""
        active = await self.get_active_playbook(client_id)
        return active.next_action if active else None
