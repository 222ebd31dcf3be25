import logging
from datetime import datetime
from typing import Dict, List, Optional

from .errors import NotFound, IntegrityViolation
from .models import (
    CARD_FIELDS, CustomCard, CustomCollectionDeckCard,
    CustomCollectionSnapshot, SnapshotCustomCard, Tournament,
)
from .unit_of_work import UnitOfWork
from shared.events import custom_card_updated_event, custom_card_deleted_event, snapshot_locked_event
from shared.pubsub import EventPublisher

logger = logging.getLogger(__name__)

ORIGIN_FIELDS = ('origin_card_id', 'origin_custom_card_id', 'origin_user_id')


def allowed_changes(changes: Dict) -> Dict:
    """Keep only editable card fields; unknown keys are dropped."""
    return {field: changes[field] for field in CARD_FIELDS if field in changes}


class CustomCardService:
    """
    User-authored cards and the edit propagation between a card and its
    snapshot copies.

    A snapshot whose ``sync_locked`` flag is set is frozen: edits at the
    source no longer reach it, and edits made on it never fan out to
    sibling snapshots.
    """

    def __init__(self, session, events: EventPublisher = None):
        self.session = session
        self.events = events or EventPublisher()

    # ==================== Reads ====================

    def get_custom_card(self, card_id: int) -> Optional[CustomCard]:
        return self.session.get(CustomCard, card_id)

    def get_user_custom_cards(self, user_id: int) -> List[CustomCard]:
        return (
            self.session.query(CustomCard)
            .filter(CustomCard.created_by == user_id, CustomCard.deleted_at.is_(None))
            .order_by(CustomCard.updated_at.desc(), CustomCard.id.desc())
            .all()
        )

    def _owned_card(self, card_id: int, user_id: int) -> CustomCard:
        card = (
            self.session.query(CustomCard)
            .filter(CustomCard.id == card_id)
            .with_for_update()
            .first()
        )
        if not card or card.is_deleted or card.created_by != user_id:
            raise NotFound("Card not found or not owned by user")
        return card

    def _unlocked_copies(self, source_card_id: int) -> List[SnapshotCustomCard]:
        return (
            self.session.query(SnapshotCustomCard)
            .join(CustomCollectionSnapshot, CustomCollectionSnapshot.id == SnapshotCustomCard.snapshot_id)
            .filter(SnapshotCustomCard.source_custom_card_id == source_card_id,
                    CustomCollectionSnapshot.sync_locked.is_(False))
            .order_by(SnapshotCustomCard.id)
            .all()
        )

    # ==================== Writes ====================

    def create_custom_card(self, user_id: int, fields: Dict) -> CustomCard:
        card_fields = allowed_changes(fields)
        if not card_fields.get('name'):
            raise IntegrityViolation("Card name is required")

        with UnitOfWork(self.session) as uow:
            card = CustomCard(created_by=user_id, version=1)
            card.apply_card_fields(card_fields)
            for origin in ORIGIN_FIELDS:
                setattr(card, origin, fields.get(origin))
            self.session.add(card)
            uow.flush()

        logger.info(f"User {user_id} created custom card {card.id} '{card.name}'")
        return card

    def _bump_source(self, card: CustomCard, changes: Dict):
        card.apply_card_fields(changes)
        card.version = card.version + 1
        card.updated_at = datetime.utcnow()

    @staticmethod
    def _sync_copy(copy: SnapshotCustomCard, changes: Dict, version: int):
        copy.apply_card_fields(changes)
        copy.version_at_snapshot = version
        copy.updated_at = datetime.utcnow()

    def edit_custom_card(self, card_id: int, user_id: int, changes: Dict) -> Dict:
        """
        Apply changes to a card, bump its version by one and copy the same
        changes into every unlocked snapshot copy.

        Returns the updated card and the number of copies touched.
        """
        changes = allowed_changes(changes)

        with UnitOfWork(self.session) as uow:
            card = self._owned_card(card_id, user_id)
            if not changes:
                raise IntegrityViolation("No valid fields to update")

            self._bump_source(card, changes)
            copies = self._unlocked_copies(card.id)
            for copy in copies:
                self._sync_copy(copy, changes, card.version)

            uow.flush()
            self.events.publish_after_commit(uow, custom_card_updated_event(card.id, card.version, len(copies)))

        logger.info(f"Custom card {card_id} now at version {card.version}, propagated to {len(copies)} snapshots")
        return {'card': card.to_dict(), 'propagatedTo': len(copies)}

    def edit_snapshot_custom_card(self, snapshot_card_id: int, user_id: int, changes: Dict,
                                  propagate_to_source: bool = True) -> Dict:
        """
        Edit one snapshot copy.

        Unlocked snapshot: the source card and every other unlocked copy
        receive the change too. Locked snapshot: only the source may be
        updated, and only when propagate_to_source is true.
        """
        changes = allowed_changes(changes)

        with UnitOfWork(self.session) as uow:
            snapshot_card = (
                self.session.query(SnapshotCustomCard)
                .filter(SnapshotCustomCard.id == snapshot_card_id)
                .with_for_update()
                .first()
            )
            if not snapshot_card:
                raise NotFound("Snapshot card not found")

            source = None
            if snapshot_card.source_custom_card_id is not None:
                source = (
                    self.session.query(CustomCard)
                    .filter(CustomCard.id == snapshot_card.source_custom_card_id)
                    .with_for_update()
                    .first()
                )
            if source is None or source.is_deleted or source.created_by != user_id:
                raise NotFound("Not authorized to edit this card")
            if not changes:
                raise IntegrityViolation("No valid fields to update")

            is_locked = bool(snapshot_card.snapshot.sync_locked)
            source_updated = False
            propagated_to = 0

            if not is_locked or propagate_to_source:
                self._bump_source(source, changes)
                source_updated = True

            self._sync_copy(snapshot_card, changes,
                            source.version if source_updated else snapshot_card.version_at_snapshot)

            if not is_locked:
                for copy in self._unlocked_copies(source.id):
                    if copy.id == snapshot_card.id:
                        continue
                    self._sync_copy(copy, changes, source.version)
                    propagated_to += 1

            uow.flush()
            if source_updated:
                self.events.publish_after_commit(uow, custom_card_updated_event(
                    source.id, source.version, propagated_to
                ))

        logger.info(f"Snapshot card {snapshot_card_id} edited (locked={is_locked}, "
                    f"source_updated={source_updated}, propagated_to={propagated_to})")
        return {
            'snapshotCardId': snapshot_card_id,
            'isLocked': is_locked,
            'sourceUpdated': source_updated,
            'propagatedTo': propagated_to,
        }

    def delete_custom_card(self, card_id: int, user_id: int) -> Dict:
        """
        Soft delete when any snapshot holds a copy of the card, hard delete
        otherwise. The card row stays locked between the check and the
        write so a snapshot cannot start referencing it in between.
        """
        with UnitOfWork(self.session) as uow:
            card = self._owned_card(card_id, user_id)
            references = (
                self.session.query(SnapshotCustomCard)
                .filter(SnapshotCustomCard.source_custom_card_id == card.id)
                .count()
            )

            if references > 0:
                card.created_by = None
                card.deleted_at = datetime.utcnow()
                delete_type = 'soft'
            else:
                (self.session.query(CustomCollectionDeckCard)
                 .filter(CustomCollectionDeckCard.custom_card_id == card.id)
                 .delete(synchronize_session='fetch'))
                (self.session.query(CustomCard)
                 .filter(CustomCard.origin_custom_card_id == card.id)
                 .update({CustomCard.origin_custom_card_id: None}, synchronize_session='fetch'))
                self.session.delete(card)
                delete_type = 'hard'

            uow.flush()
            self.events.publish_after_commit(uow, custom_card_deleted_event(card_id, delete_type))

        logger.info(f"Custom card {card_id} {delete_type} deleted ({references} snapshot copies)")
        return {'deleted': True, 'id': card_id, 'type': delete_type}

    # ==================== Snapshot locking ====================

    def lock_snapshot(self, snapshot_id: int) -> Optional[CustomCollectionSnapshot]:
        """Set sync_locked. Locking an already locked snapshot is a no-op."""
        with UnitOfWork(self.session) as uow:
            snapshot = (
                self.session.query(CustomCollectionSnapshot)
                .filter(CustomCollectionSnapshot.id == snapshot_id)
                .with_for_update()
                .first()
            )
            if snapshot is None:
                return None
            if not snapshot.sync_locked:
                snapshot.sync_locked = True
                self.events.publish_after_commit(uow, snapshot_locked_event(snapshot.tournament_id, snapshot.id))
                logger.info(f"Locked custom snapshot {snapshot.id}")
        return snapshot

    def lock_tournament_snapshots(self, tournament_id: int) -> int:
        """Lock every custom snapshot of a tournament; returns how many were newly locked."""
        with UnitOfWork(self.session) as uow:
            snapshots = (
                self.session.query(CustomCollectionSnapshot)
                .filter(CustomCollectionSnapshot.tournament_id == tournament_id,
                        CustomCollectionSnapshot.sync_locked.is_(False))
                .with_for_update()
                .all()
            )
            for snapshot in snapshots:
                snapshot.sync_locked = True
                self.events.publish_after_commit(uow, snapshot_locked_event(tournament_id, snapshot.id))

        if snapshots:
            logger.info(f"Locked {len(snapshots)} custom snapshots of tournament {tournament_id}")
        return len(snapshots)

    # ==================== History ====================

    def get_custom_card_history(self, card_id: int, user_id: int) -> Dict:
        card = self.get_custom_card(card_id)
        if not card or card.created_by != user_id:
            raise NotFound("Card not found")

        rows = (
            self.session.query(SnapshotCustomCard, Tournament)
            .join(CustomCollectionSnapshot, CustomCollectionSnapshot.id == SnapshotCustomCard.snapshot_id)
            .join(Tournament, Tournament.id == CustomCollectionSnapshot.tournament_id)
            .filter(SnapshotCustomCard.source_custom_card_id == card.id)
            .order_by(SnapshotCustomCard.created_at.desc(), SnapshotCustomCard.id.desc())
            .all()
        )

        history = []
        for index, (copy, tournament) in enumerate(rows):
            card_data = copy.card_fields()
            changes = None
            if index < len(rows) - 1:
                previous = rows[index + 1][0].card_fields()
                diff = [
                    {'field': field, 'from': previous[field], 'to': card_data[field]}
                    for field in CARD_FIELDS
                    if previous[field] != card_data[field]
                ]
                changes = diff or None

            history.append({
                'snapshotCardId': copy.id,
                'versionAtSnapshot': copy.version_at_snapshot,
                'createdAt': copy.created_at.isoformat() if copy.created_at else None,
                'tournament': {'id': tournament.id, 'name': tournament.name, 'status': tournament.status},
                'cardData': card_data,
                'changes': changes,
            })

        return {'cardName': card.name, 'currentVersion': card.version, 'history': history}
