"""
Firestore-backed store for identity mappings, sync logs and conflicts.
"""

import logging
from datetime import datetime
from typing import Any, List, Optional
from urllib.parse import quote

from google.cloud import firestore
from google.auth import default

from ..exceptions import IdentityMappingError
from ..models.records import (
    ConflictStatus, IdentityMapping, SyncConflict, SyncLogEntry, SyncLogStatus, utcnow
)
from .store import SyncStore

logger = logging.getLogger(__name__)


def _doc_id(*parts: Any) -> str:
    """Deterministic document id; one document per unique key."""
    return "|".join(quote("" if part is None else str(part), safe="") for part in parts)


class FirestoreStore(SyncStore):
    """
    SyncStore on Google Cloud Firestore.

    Mappings are keyed by their local side. A second collection indexes the
    remote side so both uniqueness constraints hold, and both documents are
    written in one transaction.
    """

    def __init__(self, project_id: Optional[str] = None, client: Optional[firestore.Client] = None):
        """
        Initialize the Firestore store.

        Args:
            project_id: Google Cloud project ID. If None, uses default from environment.
            client: Pre-built Firestore client, mainly for tests
        """
        try:
            if client is not None:
                self.db = client
            elif project_id:
                self.db = firestore.Client(project=project_id)
            else:
                # Use application default credentials
                credentials, project = default()
                self.db = firestore.Client(project=project, credentials=credentials)

            self.mappings_collection = "syncable_id_mappings"
            self.remote_index_collection = "syncable_id_mapping_remotes"
            self.logs_collection = "syncable_logs"
            self.conflicts_collection = "syncable_conflicts"

            logger.info(f"Firestore store initialized for project: {self.db.project}")

        except Exception as e:
            logger.error(f"Failed to initialize Firestore: {e}")
            raise

    # Identity Mappings

    def get_mapping_by_local(self, local_type, local_id, system_id, tenant_id=None):
        try:
            doc = self.db.collection(self.mappings_collection).document(
                _doc_id(local_type, local_id, system_id, tenant_id)
            ).get()
            if doc.exists:
                return IdentityMapping.from_firestore(doc.to_dict())
            return None

        except Exception as e:
            logger.error(f"Failed to get mapping for {local_type}#{local_id}: {e}")
            raise

    def get_mapping_by_remote(self, remote_type, remote_id, system_id, tenant_id=None):
        try:
            index = self.db.collection(self.remote_index_collection).document(
                _doc_id(remote_type, remote_id, system_id, tenant_id)
            ).get()
            if not index.exists:
                return None

            doc = self.db.collection(self.mappings_collection).document(
                index.to_dict()["mapping_id"]
            ).get()
            if doc.exists:
                return IdentityMapping.from_firestore(doc.to_dict())
            return None

        except Exception as e:
            logger.error(f"Failed to get mapping for remote {remote_type}#{remote_id}: {e}")
            raise

    def upsert_mapping(self, mapping):
        """
        Create or update a mapping and its remote index atomically.

        Args:
            mapping: Mapping to store

        Returns:
            The stored mapping

        Raises:
            IdentityMappingError: If the remote side is bound to another local record
        """
        mapping_id = _doc_id(mapping.local_type, mapping.local_id, mapping.system_id, mapping.tenant_id)
        remote_id = _doc_id(mapping.remote_type, mapping.remote_id, mapping.system_id, mapping.tenant_id)

        try:
            transaction = self.db.transaction()
            stored = firestore.transactional(self._upsert_in_transaction)(
                transaction, mapping, mapping_id, remote_id
            )
            logger.debug(f"Upserted mapping {mapping_id} -> {remote_id}")
            return stored

        except IdentityMappingError:
            raise
        except Exception as e:
            logger.error(f"Failed to upsert mapping {mapping_id}: {e}")
            raise

    def _upsert_in_transaction(self, transaction, mapping, mapping_id, remote_id):
        mapping_ref = self.db.collection(self.mappings_collection).document(mapping_id)
        remote_ref = self.db.collection(self.remote_index_collection).document(remote_id)

        remote_doc = remote_ref.get(transaction=transaction)
        if remote_doc.exists and remote_doc.to_dict().get("mapping_id") != mapping_id:
            raise IdentityMappingError(
                f"{mapping.remote_type}#{mapping.remote_id} on {mapping.system_id} "
                f"is already mapped to {remote_doc.to_dict().get('mapping_id')}"
            )

        existing_doc = mapping_ref.get(transaction=transaction)
        if existing_doc.exists:
            existing = IdentityMapping.from_firestore(existing_doc.to_dict())
            old_remote_id = _doc_id(existing.remote_type, existing.remote_id, existing.system_id, existing.tenant_id)
            if old_remote_id != remote_id:
                transaction.delete(self.db.collection(self.remote_index_collection).document(old_remote_id))
            stored = existing.model_copy(update={
                "remote_type": mapping.remote_type,
                "remote_id": mapping.remote_id,
                "updated_at": utcnow(),
            })
        else:
            stored = mapping

        transaction.set(mapping_ref, stored.to_firestore())
        transaction.set(remote_ref, {"mapping_id": mapping_id})
        return stored

    def delete_mapping(self, local_type, local_id, system_id, tenant_id=None):
        mapping_id = _doc_id(local_type, local_id, system_id, tenant_id)
        try:
            mapping_ref = self.db.collection(self.mappings_collection).document(mapping_id)
            doc = mapping_ref.get()
            if not doc.exists:
                return False

            existing = IdentityMapping.from_firestore(doc.to_dict())
            batch = self.db.batch()
            batch.delete(mapping_ref)
            batch.delete(self.db.collection(self.remote_index_collection).document(
                _doc_id(existing.remote_type, existing.remote_id, existing.system_id, existing.tenant_id)
            ))
            batch.commit()

            logger.info(f"Deleted mapping: {mapping_id}")
            return True

        except Exception as e:
            logger.error(f"Failed to delete mapping {mapping_id}: {e}")
            raise

    def list_mappings(self, local_type=None, local_id=None, limit=100):
        try:
            query = self.db.collection(self.mappings_collection)
            if local_type:
                query = query.where("local_type", "==", local_type)
            if local_id is not None:
                query = query.where("local_id", "==", local_id)
            query = query.limit(limit)

            return [IdentityMapping.from_firestore(doc.to_dict()) for doc in query.stream()]

        except Exception as e:
            logger.error(f"Failed to list mappings: {e}")
            raise

    # Sync Log

    def append_log(self, entry):
        try:
            self.db.collection(self.logs_collection).document(entry.id).set(entry.to_firestore())
            return entry

        except Exception as e:
            logger.error(f"Failed to append sync log for {entry.model_type}#{entry.model_id}: {e}")
            raise

    def find_latest_log(self, model_type, model_id, status, origin_system_id, since: Optional[datetime] = None):
        try:
            query = self.db.collection(self.logs_collection)
            query = query.where("model_type", "==", model_type)
            query = query.where("model_id", "==", model_id)
            query = query.where("status", "==", SyncLogStatus(status).value)
            query = query.where("data.origin_system_id", "==", origin_system_id)
            if since is not None:
                query = query.where("created_at", ">=", since)
            query = query.order_by("created_at", direction=firestore.Query.DESCENDING).limit(1)

            for doc in query.stream():
                return SyncLogEntry.from_firestore(doc.to_dict())
            return None

        except Exception as e:
            logger.error(f"Failed to query sync log for {model_type}#{model_id}: {e}")
            raise

    def list_logs(self, model_type=None, model_id=None, status=None, limit=50) -> List[SyncLogEntry]:
        try:
            query = self.db.collection(self.logs_collection)
            if model_type:
                query = query.where("model_type", "==", model_type)
            if model_id is not None:
                query = query.where("model_id", "==", model_id)
            if status:
                query = query.where("status", "==", SyncLogStatus(status).value)
            query = query.order_by("created_at", direction=firestore.Query.DESCENDING).limit(limit)

            return [SyncLogEntry.from_firestore(doc.to_dict()) for doc in query.stream()]

        except Exception as e:
            logger.error(f"Failed to list sync logs: {e}")
            raise

    # Conflicts

    def create_conflict(self, conflict):
        try:
            self.db.collection(self.conflicts_collection).document(conflict.id).set(conflict.to_firestore())
            logger.info(f"Created conflict {conflict.id} for {conflict.model_type}#{conflict.model_id}")
            return conflict

        except Exception as e:
            logger.error(f"Failed to create conflict {conflict.id}: {e}")
            raise

    def get_conflict(self, conflict_id):
        try:
            doc = self.db.collection(self.conflicts_collection).document(conflict_id).get()
            if doc.exists:
                return SyncConflict.from_firestore(doc.to_dict())
            return None

        except Exception as e:
            logger.error(f"Failed to get conflict {conflict_id}: {e}")
            raise

    def save_conflict(self, conflict):
        try:
            self.db.collection(self.conflicts_collection).document(conflict.id).set(conflict.to_firestore())
            return conflict

        except Exception as e:
            logger.error(f"Failed to save conflict {conflict.id}: {e}")
            raise

    def list_conflicts(self, status: Optional[ConflictStatus] = None, model_type=None, limit=100):
        try:
            query = self.db.collection(self.conflicts_collection)
            if status:
                query = query.where("status", "==", ConflictStatus(status).value)
            if model_type:
                query = query.where("model_type", "==", model_type)
            query = query.order_by("created_at", direction=firestore.Query.DESCENDING).limit(limit)

            return [SyncConflict.from_firestore(doc.to_dict()) for doc in query.stream()]

        except Exception as e:
            logger.error(f"Failed to list conflicts: {e}")
            raise
