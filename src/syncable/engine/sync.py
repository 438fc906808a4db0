"""
Sync orchestrator: outbound pushes, inbound applies and batches.
"""

import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError

from ..core.config import SyncSettings
from ..exceptions import (
    NoMappingError, SyncDecryptionError, SyncValidationError, TransientTransportError
)
from ..integrations.client import SyncApiClient
from ..models.config import ModelSyncConfig
from ..models.domain import ModelRepository, conditions_met, read_attribute
from ..models.payload import BatchOperation, SyncOperation, SyncPayload
from ..models.records import SyncAction, SyncLogEntry, SyncLogStatus, utcnow
from ..services.encryption import EncryptionService
from ..services.store import SyncStore
from ..services.tenant import TenantContext
from .conflicts import ConflictResolver
from .events import SYNC_FAILED, SYNC_RECEIVED, SYNC_SUCCEEDED, EventBus
from .identity import IdentityMapper
from .jobs import SyncDispatcher
from .transforms import TransformEngine

logger = logging.getLogger(__name__)


class SyncOrchestrator:
    """
    Ties transformation, identity mapping, conflict resolution, encryption
    and transport together for both directions of a sync.
    """

    def __init__(
        self,
        settings: SyncSettings,
        store: SyncStore,
        repository: ModelRepository,
        transformer: Optional[TransformEngine] = None,
        identity: Optional[IdentityMapper] = None,
        conflicts: Optional[ConflictResolver] = None,
        client: Optional[SyncApiClient] = None,
        encryption: Optional[EncryptionService] = None,
        tenant: Optional[TenantContext] = None,
        events: Optional[EventBus] = None,
        dispatcher: Optional[SyncDispatcher] = None,
    ):
        """
        Initialize the orchestrator.

        Collaborators that are not supplied are built from the settings.

        Args:
            settings: Complete sync settings
            store: Persistence for mappings, logs and conflicts
            repository: Persistence for domain objects
        """
        self.settings = settings
        self.store = store
        self.repository = repository
        self.tenant = tenant or TenantContext.from_settings(settings)
        self.transformer = transformer or TransformEngine()
        self.identity = identity or IdentityMapper(store, self.tenant)
        self.conflicts = conflicts or ConflictResolver(settings, store, self.tenant)

        if encryption is None and settings.encryption.key:
            encryption = EncryptionService(settings.encryption.key, settings.encryption.serialize_data)
        self.encryption = encryption

        self.client = client or SyncApiClient(
            settings.api, self.encryption, pool_size=settings.queue.max_workers
        )
        self.events = events or EventBus()
        self.dispatcher = dispatcher or SyncDispatcher(self.push, settings)

    @property
    def system_id(self) -> str:
        return self.settings.system_id

    # Host lifecycle hooks

    def on_created(self, obj: Any):
        if obj.sync_disabled:
            return None
        return self.dispatcher.dispatch(obj, SyncAction.CREATE)

    def on_before_update(self, obj: Any) -> None:
        """Capture the fields being changed, before the save clears them."""
        obj.changed_fields = obj.get_dirty()

    def on_updated(self, obj: Any):
        if obj.sync_disabled or not self.should_sync(obj):
            return None
        return self.dispatcher.dispatch(obj, SyncAction.UPDATE)

    def on_deleted(self, obj: Any):
        if obj.sync_disabled or not self.should_sync(obj):
            return None
        return self.dispatcher.dispatch(obj, SyncAction.DELETE)

    # Configuration

    def resolve_config(self, obj: Any) -> ModelSyncConfig:
        """
        Sync configuration for an object: the centralized table, else the
        object's handler, else the object itself. The first source wins.
        """
        type_name = obj.type_name()
        if type_name in self.settings.models:
            return self.settings.models[type_name]

        handler = obj.sync_handler() if hasattr(obj, "sync_handler") else None
        if handler is not None:
            return handler.get_sync_config()

        if hasattr(obj, "get_sync_config"):
            return obj.get_sync_config()

        return ModelSyncConfig(target_model=type_name)

    def should_sync(self, obj: Any) -> bool:
        """Evaluate global and per-type selective sync conditions."""
        selective = self.settings.selective_sync
        global_conditions = dict(selective.conditions) if selective.enabled else {}

        type_name = obj.type_name()
        if type_name in self.settings.models:
            conditions = dict(global_conditions)
            conditions.update(self.settings.models[type_name].conditions)
            return conditions_met(obj, conditions)

        handler = obj.sync_handler() if hasattr(obj, "sync_handler") else None
        provider = handler if handler is not None else obj
        if hasattr(provider, "should_sync"):
            return provider.should_sync(global_conditions)
        return conditions_met(obj, global_conditions)

    # Outbound

    def push(self, obj: Any, action: Union[SyncAction, str] = SyncAction.UPDATE,
             origin_system_id: Optional[str] = None) -> bool:
        """
        Sync one object to the target system.

        Args:
            obj: Domain object
            action: create, update or delete
            origin_system_id: System the change came from, when it was received

        Returns:
            True on success or when the sync was skipped, False on failure

        Raises:
            TransientTransportError: After recording the failure, so the
                enclosing job can retry
        """
        action = SyncAction(action)

        if self.should_skip(obj, origin_system_id):
            logger.debug(f"Skipping sync of {obj!r} ({action.value})")
            return True

        try:
            operation = self.build_operation(obj, action)
            wire = self.wrap(operation.payload)

            response = self.client.send(wire, action.value)
            success = self.is_successful(response)

            if success:
                if action == SyncAction.CREATE:
                    self._map_created(obj, operation, response)
                elif action == SyncAction.DELETE:
                    self.identity.delete_mapping(
                        operation.source_type, operation.source_id,
                        self.settings.api.target_system_id, operation.tenant_id,
                    )
                self.events.emit(SYNC_SUCCEEDED, model=obj, action=action)
                self._write_log(obj, action, SyncLogStatus.SUCCESS, "Sync completed successfully",
                                changed_fields=operation.changed_fields)
            else:
                reason = "API request failed"
                if isinstance(response, dict) and response.get("message"):
                    reason = f"{reason}: {response['message']}"
                self.events.emit(SYNC_FAILED, model=obj, action=action, error=reason)
                self._write_log(obj, action, SyncLogStatus.FAILED, reason,
                                changed_fields=operation.changed_fields)

            return success

        except TransientTransportError as e:
            self._record_failure(obj, action, e)
            raise
        except Exception as e:
            self._record_failure(obj, action, e)
            return False

    def should_skip(self, obj: Any, origin_system_id: Optional[str]) -> bool:
        if origin_system_id is not None:
            if origin_system_id == self.system_id:
                return True
            if self.settings.bidirectional.enabled and self.recently_synced_from(obj, origin_system_id):
                return True

        return not self.should_sync(obj)

    def recently_synced_from(self, obj: Any, origin_system_id: str) -> bool:
        """Whether a successful sync of this object from the origin lies inside the detection window."""
        since = utcnow() - timedelta(minutes=self.settings.bidirectional.detection_window_minutes)
        entry = self.store.find_latest_log(
            obj.type_name(), obj.get_key(), SyncLogStatus.SUCCESS, origin_system_id, since
        )
        return entry is not None

    def build_operation(self, obj: Any, action: SyncAction) -> SyncOperation:
        """Transform and enrich an object into the payload for one push."""
        config = self.resolve_config(obj)
        payload = self.transformer.build(obj, config, action)

        tenant_id = None
        if self.tenant.enabled:
            tenant_id = self._object_tenant(obj)
            if tenant_id is None:
                tenant_id = self.tenant.current()
            if tenant_id is not None:
                payload["tenant_id"] = tenant_id

        target_tenant_id = self.resolve_target_tenant(obj, config)
        if target_tenant_id is not None:
            payload["target_tenant_id"] = target_tenant_id

        payload["origin_system_id"] = self.system_id

        changed_fields = frozenset()
        if action == SyncAction.UPDATE:
            dirty = obj.get_dirty() if obj.is_dirty() else dict(getattr(obj, "changed_fields", None) or {})
            if dirty:
                changed_fields = frozenset(dirty)
                payload["changed_fields"] = sorted(changed_fields)

        if action in (SyncAction.UPDATE, SyncAction.DELETE):
            remote = self.identity.resolve_remote(
                obj.type_name(), obj.get_key(), self.settings.api.target_system_id, tenant_id
            )
            if remote is not None:
                payload["target_model"], payload["target_id"] = remote

        payload = SyncPayload(**payload).to_wire()

        return SyncOperation(
            action=action,
            source_type=obj.type_name(),
            source_id=obj.get_key(),
            target_type=payload["target_model"],
            payload=payload,
            changed_fields=changed_fields,
            relations=payload.get("relations", {}),
            tenant_id=tenant_id,
            origin_system_id=self.system_id,
        )

    def resolve_target_tenant(self, obj: Any, config: ModelSyncConfig) -> Optional[Any]:
        """
        Tenant to address in the target system: the object's explicit
        override, then its own tenant attribute, then the per-type setting,
        then the global setting.
        """
        handler = obj.sync_handler() if hasattr(obj, "sync_handler") else None
        provider = handler if handler is not None else obj

        target = provider.get_target_tenant_id() if hasattr(provider, "get_target_tenant_id") else None
        if target is None:
            target = self._object_tenant(obj)
        if target is None:
            target = config.target_tenant_id
        if target is None:
            target = self.settings.target_tenant_id
        return target

    def wrap(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Encrypt the payload for transport when encryption is enabled."""
        if not self.settings.encryption.enabled:
            return payload
        if self.encryption is None:
            raise SyncDecryptionError("Encryption is enabled but no key is configured")
        return {
            "encrypted": True,
            "data": self.encryption.encrypt(payload),
            "origin_system_id": self.system_id,
        }

    @staticmethod
    def is_successful(response: Any) -> bool:
        if not response:
            return False
        if isinstance(response, dict) and "success" in response:
            return bool(response["success"])
        return True

    def _map_created(self, obj: Any, operation: SyncOperation, response: Dict[str, Any]) -> None:
        data = response.get("data") if isinstance(response, dict) else None
        remote_id = data.get("id") if isinstance(data, dict) else None
        if remote_id is None:
            logger.warning(f"Create of {obj!r} succeeded without a remote id; no mapping stored")
            return

        self.identity.upsert(
            operation.source_type,
            operation.source_id,
            operation.target_type,
            remote_id,
            self.settings.api.target_system_id,
            operation.tenant_id,
        )

    def _record_failure(self, obj: Any, action: SyncAction, error: Exception) -> None:
        if self.settings.logging.enabled:
            logger.error(f"Sync failed for {obj!r} ({action.value}): {error}")
        self.events.emit(SYNC_FAILED, model=obj, action=action, error=str(error))
        self._write_log(obj, action, SyncLogStatus.FAILED, str(error))

    def _object_tenant(self, obj: Any) -> Optional[Any]:
        column = self.tenant.identifier_column
        if hasattr(obj, "has_attribute") and not obj.has_attribute(column):
            return None
        try:
            return read_attribute(obj, column)
        except (AttributeError, KeyError):
            return None

    def _write_log(self, obj: Any, action: SyncAction, status: SyncLogStatus, message: str,
                   origin_system_id: Optional[str] = None, changed_fields=(),
                   model_type: Optional[str] = None, model_id: Any = None) -> None:
        if not self.settings.logging.database_enabled:
            return

        entry = SyncLogEntry(
            model_type=model_type or obj.type_name(),
            model_id=model_id if model_id is not None else obj.get_key(),
            action=action,
            status=status,
            message=message,
            data={
                "origin_system_id": origin_system_id or self.system_id,
                "changed_fields": sorted(changed_fields),
            },
            tenant_id=self.tenant.current(),
        )
        try:
            self.store.append_log(entry)
        except Exception as e:
            logger.error(f"Failed to write sync log for {entry.model_type}#{entry.model_id}: {e}")

    # Inbound

    def decode(self, body: Dict[str, Any]) -> Dict[str, Any]:
        """
        Unwrap a received body.

        Raises:
            SyncDecryptionError: If the body is encrypted and cannot be decrypted
        """
        if not isinstance(body, dict) or not body.get("encrypted"):
            return body
        if self.encryption is None:
            raise SyncDecryptionError("Received encrypted data but no encryption key is configured")

        data = self.encryption.decrypt(body.get("data", ""))
        if not isinstance(data, dict):
            raise SyncDecryptionError("Decrypted payload is not an object")
        return data

    def receive(self, body: Dict[str, Any]) -> Dict[str, Any]:
        """Accept a payload without applying it and announce it to listeners."""
        data = self.decode(body)
        self.events.emit(SYNC_RECEIVED, data=data)
        return {"success": True, "message": "Data received successfully"}

    def apply_incoming(self, payload: Union[SyncPayload, Dict[str, Any]], action: Union[SyncAction, str],
                       origin_system_id: str) -> Dict[str, Any]:
        """
        Apply a change received from another system.

        Args:
            payload: Decrypted wire payload
            action: create, update or delete
            origin_system_id: System that sent the change

        Returns:
            {"success", "message", "data": {"id", "model_type"}}

        Raises:
            SyncValidationError: If the payload or action is malformed
            NoMappingError: If an update or delete targets an unmapped record
        """
        try:
            action = SyncAction(action)
        except ValueError:
            raise SyncValidationError(f"Unknown action: {action}")

        if not isinstance(payload, SyncPayload):
            try:
                payload = SyncPayload(**payload)
            except (ValidationError, TypeError) as e:
                raise SyncValidationError(f"Invalid sync payload: {e}")

        try:
            if action == SyncAction.CREATE:
                return self._process_create(payload, origin_system_id)
            if action == SyncAction.UPDATE:
                return self._process_update(payload, origin_system_id)
            return self._process_delete(payload, origin_system_id)

        except Exception as e:
            if self.settings.logging.enabled:
                logger.error(
                    f"Incoming sync failed: {e} (action={action.value}, origin={origin_system_id}, "
                    f"source={payload.source_model}#{payload.source_id})"
                )
            raise

    def batch(self, batch: Union[Dict[str, Any], List[Any]], origin_system_id: str) -> Dict[str, Any]:
        """
        Apply several operations independently.

        Returns:
            {"success": all succeeded, "results": one entry per operation}

        Raises:
            SyncValidationError: If the batch has no operations list
        """
        operations = batch.get("operations") if isinstance(batch, dict) else batch
        if not isinstance(operations, list):
            raise SyncValidationError('Invalid batch format. "operations" array is required.')

        results: List[Dict[str, Any]] = []
        success = True

        for index, operation in enumerate(operations):
            try:
                try:
                    operation = BatchOperation(**operation)
                except (ValidationError, TypeError):
                    raise SyncValidationError('Each operation requires "action" and "data" fields.')

                result = self.apply_incoming(operation.data, operation.action, origin_system_id)
                results.append(result)
                if not result.get("success", False):
                    success = False

            except Exception as e:
                logger.warning(f"Batch operation {index} failed: {e}")
                results.append({"success": False, "error": str(e)})
                success = False

        return {"success": success, "results": results}

    def _process_create(self, payload: SyncPayload, origin_system_id: str) -> Dict[str, Any]:
        if not payload.target_model:
            raise SyncValidationError("target_model is required to create a record")

        local = self.identity.resolve_local(payload.source_model, payload.source_id, origin_system_id)
        if local is not None:
            if self.repository.find(*local) is not None:
                logger.info(
                    f"{payload.source_model}#{payload.source_id} from {origin_system_id} is already "
                    f"mapped to {local[0]}#{local[1]}; applying repeated create as update"
                )
                return self._process_update(payload, origin_system_id)
            # Mapped record was removed locally
            self.identity.delete_mapping(local[0], local[1], origin_system_id)

        obj = self.repository.new(payload.target_model)
        obj.without_sync()
        obj.fill(self._incoming_data(payload))

        tenant_id = self.tenant.current()
        column = self.tenant.identifier_column
        if tenant_id is not None and not obj.has_attribute(column):
            obj.set_attribute(column, tenant_id)

        self.repository.save(obj)
        self._apply_related(obj, payload)

        self.identity.upsert(
            obj.type_name(), obj.get_key(), payload.source_model, payload.source_id, origin_system_id
        )
        obj.with_sync()

        self._write_log(obj, SyncAction.CREATE, SyncLogStatus.SUCCESS, "Received create",
                        origin_system_id=origin_system_id)
        logger.info(f"Created {obj!r} from {payload.source_model}#{payload.source_id} ({origin_system_id})")

        return {
            "success": True,
            "message": "Model created successfully",
            "data": {"id": obj.get_key(), "model_type": obj.type_name()},
        }

    def _process_update(self, payload: SyncPayload, origin_system_id: str) -> Dict[str, Any]:
        obj = self._find_mapped(payload, origin_system_id)

        data = self._incoming_data(payload)
        changed = payload.changed_field_set()
        if self.settings.differential_sync.enabled and changed is not None:
            data = {field: value for field, value in data.items() if field in changed}

        if self.settings.bidirectional.enabled and payload.origin_system_id and changed is not None:
            data = self.conflicts.resolve(obj, data, changed, payload.origin_system_id)

        obj.without_sync()
        obj.fill(data)
        self.repository.save(obj)
        self._apply_related(obj, payload)

        # Keyed by the sender's id as received, never by the local id used for lookup
        self.identity.upsert(
            obj.type_name(), obj.get_key(), payload.source_model, payload.source_id, origin_system_id
        )
        obj.with_sync()

        self._write_log(obj, SyncAction.UPDATE, SyncLogStatus.SUCCESS, "Received update",
                        origin_system_id=origin_system_id, changed_fields=data.keys())

        return {
            "success": True,
            "message": "Model updated successfully",
            "data": {"id": obj.get_key(), "model_type": obj.type_name()},
        }

    def _process_delete(self, payload: SyncPayload, origin_system_id: str) -> Dict[str, Any]:
        obj = self._find_mapped(payload, origin_system_id)
        local_type, local_id = obj.type_name(), obj.get_key()

        obj.without_sync()
        self.repository.delete(obj)
        self.identity.delete_mapping(local_type, local_id, origin_system_id)

        self._write_log(obj, SyncAction.DELETE, SyncLogStatus.SUCCESS, "Received delete",
                        origin_system_id=origin_system_id)

        return {
            "success": True,
            "message": "Model deleted successfully",
            "data": {"id": local_id, "model_type": local_type},
        }

    def _find_mapped(self, payload: SyncPayload, origin_system_id: str) -> Any:
        local = self.identity.resolve_local(payload.source_model, payload.source_id, origin_system_id)
        if local is None:
            raise NoMappingError(
                f"No mapping for {payload.source_model}#{payload.source_id} from {origin_system_id}"
            )

        local_type, local_id = local
        obj = self.repository.find(local_type, local_id)
        if obj is None:
            raise NoMappingError(f"Mapped record {local_type}#{local_id} no longer exists")
        return obj

    @staticmethod
    def _incoming_data(payload: SyncPayload) -> Dict[str, Any]:
        data = dict(payload.data)
        data.pop("target_tenant_id", None)
        return data

    def _apply_related(self, obj: Any, payload: SyncPayload) -> None:
        """Apply received relations and additional data, then persist the changes."""
        if payload.relations:
            relation_keys = getattr(obj, "sync_relation_keys", {}) or {}
            for relation, value in payload.relations.items():
                many = isinstance(value, list)
                for attributes in (value if many else [value]):
                    self.repository.save_related(
                        obj, relation, attributes, match_on=relation_keys.get(relation), many=many
                    )

        if payload.additional:
            self._process_additional(obj, payload.additional)

        if obj.is_dirty():
            self.repository.save(obj)

    def _process_additional(self, obj: Any, additional: Dict[str, Any]) -> None:
        remaining = dict(additional)

        handler = obj.sync_handler() if hasattr(obj, "sync_handler") else None
        if handler is not None:
            for key, data in additional.items():
                if handler.process_additional(key, data):
                    remaining.pop(key)

        for key, data in remaining.items():
            method = getattr(obj, f"handle_additional_{key}", None)
            if callable(method):
                method(data)
            else:
                logger.debug(f"No handler for additional data '{key}' on {obj!r}")
