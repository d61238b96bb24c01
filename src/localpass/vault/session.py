# Vault Session Manager
#
# Locked <-> Unlocked state machine over one VaultStore.
#   - setup / unlock move to Unlocked; lock, idle timeout and failed
#     re-verification move to Locked
#   - the master password is held only while Unlocked, as a SecretPassword
#     that is zeroed on every lock and on every error exit
#   - all mutations of the entry set and the store are serialized by one
#     RLock; timer callbacks take the same lock
#   - the in-memory entry list is always sorted by updated_at, newest first

import logging
import threading
import uuid
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from ..core.audit_log import AuditLogger, EventSeverity, EventType, get_audit_logger
from .authenticator import VaultAuthenticator
from .codec import (
    ENTRY_FIELDS,
    CredentialEntry,
    decode_entry,
    encode_entry,
    validate_entry_fields,
)
from .encryption import DEFAULT_KDF_PARAMS, EncryptionService, KdfParams, verify_master_password
from .exceptions import (
    AuthenticationFailure,
    DecodeError,
    EntryNotFoundError,
    StorageFailure,
    ValidationFailure,
    VaultError,
    VaultLockedError,
    VaultStateError,
)
from .preferences import (
    PREF_AUTO_LOCK_TIMEOUT,
    PREF_CLIPBOARD_CLEAR_TIME,
    PREF_DARK_MODE,
    PREF_LOCALE,
    VaultPreferences,
    load_preferences,
    validate_duration,
    validate_locale,
)
from .secret import SecretPassword
from .store import VaultStore
from .timers import ResettableTimer, TimerFactory, now_ms

logger = logging.getLogger(__name__)

# Messages returned by setup / unlock / change_password. None of them names
# an individual record.
MSG_VAULT_EXISTS = "Vault already exists. Use unlock() instead."
MSG_NO_VAULT = "Vault does not exist. Set up the vault first."
MSG_ALREADY_UNLOCKED = "Vault is already unlocked"
MSG_LOCKED = "Vault is locked. Unlock vault first."
MSG_INCORRECT_PASSWORD = "Incorrect master password"
MSG_VERIFICATION_CORRUPTED = "Vault verification data is corrupted"
MSG_SETUP_FAILED = "Failed to create vault. Please retry."
MSG_UNLOCK_FAILED = "Failed to unlock vault. Please retry."
MSG_REVERIFY_FAILED = "Current password could not be verified. The vault has been locked."
MSG_CHANGE_FAILED = "Failed to change password. The current password still works. Please retry."


class LockState(str, Enum):
    LOCKED = "locked"
    UNLOCKED = "unlocked"


class VaultSession:
    """
    Owns the unlocked vault: master password, decrypted entries and timers.

    Security:
    - Password correctness is decided only by the verification token
    - Every entry is encrypted individually with a fresh salt and iv
    - One unreadable record never blocks unlock; it is skipped and logged
    - Password change is a staged, all-or-nothing re-encryption

    Usage::

        session = VaultSession(VaultStore("data/vault.db"))
        session.open()
        ok, message = session.unlock("correct horse battery")
        entry = session.add_entry({"title": "GitHub", "password": "..."})
        session.close()

    Args:
        store: Store handle; opened by ``open()`` and closed by ``close()``.
        kdf_params: Cost parameters for new records.
        min_password_length: Master password minimum length.
        clock: Millisecond clock for entry timestamps.
        timer_factory: Factory for the idle and clipboard timers.
        clipboard_writer: Callable that places text on the clipboard.
        audit_logger: Audit sink; defaults to the global audit logger.
        id_factory: Generates entry ids.
    """

    def __init__(
        self,
        store: VaultStore,
        kdf_params: KdfParams = DEFAULT_KDF_PARAMS,
        min_password_length: int = 8,
        clock: Callable[[], int] = now_ms,
        timer_factory: Optional[TimerFactory] = None,
        clipboard_writer: Optional[Callable[[str], None]] = None,
        audit_logger: Optional[AuditLogger] = None,
        id_factory: Optional[Callable[[], str]] = None,
    ):
        self.store = store
        self.kdf_params = kdf_params
        self.min_password_length = min_password_length
        self.authenticator = VaultAuthenticator(store, kdf_params)
        self.preferences = VaultPreferences()

        self._clock = clock
        self._clipboard_writer = clipboard_writer
        self._audit_logger = audit_logger
        self._id_factory = id_factory or (lambda: str(uuid.uuid4()))

        self._lock = threading.RLock()
        self._state = LockState.LOCKED
        self._password: Optional[SecretPassword] = None
        self._entries: List[CredentialEntry] = []
        self._loading = False

        self._idle_timer = ResettableTimer("idle-lock", self._on_idle_timeout, timer_factory)
        self._clipboard_timer = ResettableTimer(
            "clipboard-clear", self._on_clipboard_timeout, timer_factory
        )

    # ── Lifecycle ────────────────────────────────────────────────────

    def open(self) -> "VaultSession":
        """Open the store and load preferences. Starts Locked."""
        with self._lock:
            self._loading = True
            try:
                self.store.open()
                self.preferences = load_preferences(self.store)
            finally:
                self._loading = False
        return self

    def close(self) -> None:
        """Lock, cancel both timers and close the store."""
        with self._lock:
            self.lock()
            self._clipboard_timer.cancel()
            self.store.close()

    def __enter__(self) -> "VaultSession":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ── Observable state ─────────────────────────────────────────────

    @property
    def state(self) -> LockState:
        return self._state

    @property
    def is_locked(self) -> bool:
        return self._state is LockState.LOCKED

    @property
    def is_loading(self) -> bool:
        return self._loading

    @property
    def is_initialized(self) -> bool:
        return self.authenticator.is_initialized()

    @property
    def entries(self) -> List[CredentialEntry]:
        """Snapshot of the decrypted entries, newest updated first."""
        return list(self._entries)

    # ── Lock state machine ───────────────────────────────────────────

    def setup(self, password: str) -> Tuple[bool, str]:
        """
        Create a new vault and unlock it with an empty entry set.

        Only valid while the vault is uninitialized.

        Returns:
            (success, message)
        """
        with self._lock:
            is_valid, error_msg = verify_master_password(password, self.min_password_length)
            if not is_valid:
                return False, error_msg

            secret = SecretPassword(password)
            try:
                self.authenticator.initialize(secret)
            except VaultStateError:
                secret.wipe()
                return False, MSG_VAULT_EXISTS
            except StorageFailure as e:
                secret.wipe()
                self._audit().log_vault_event(
                    EventType.VAULT_ERROR,
                    f"Failed to initialize vault: {e}",
                    severity=EventSeverity.CRITICAL,
                )
                return False, MSG_SETUP_FAILED
            except BaseException:
                secret.wipe()
                raise

            self._enter_unlocked(secret, [])
            self._audit().log_vault_event(
                EventType.VAULT_CREATED, "Vault initialized with master password"
            )
            return True, "Vault created successfully!"

    def unlock(self, password: str) -> Tuple[bool, str]:
        """
        Unlock with the master password and decrypt every stored entry.

        Records that fail to decrypt or decode are skipped with a warning;
        only a failed password check fails the unlock.

        Returns:
            (success, message)
        """
        with self._lock:
            if self._state is LockState.UNLOCKED:
                return False, MSG_ALREADY_UNLOCKED
            if not isinstance(password, str) or not password:
                return False, MSG_INCORRECT_PASSWORD

            secret = SecretPassword(password)
            self._loading = True
            try:
                if not self.authenticator.is_initialized():
                    secret.wipe()
                    return False, MSG_NO_VAULT

                if not self.authenticator.verify(secret):
                    secret.wipe()
                    self._audit().log_vault_event(
                        EventType.VAULT_UNLOCK_FAILED,
                        "Vault unlock failed: incorrect password",
                        severity=EventSeverity.ALERT,
                    )
                    return False, MSG_INCORRECT_PASSWORD

                entries, skipped = self._load_entries(secret)
            except DecodeError as e:
                secret.wipe()
                self._audit().log_vault_event(
                    EventType.VAULT_ERROR,
                    f"Verification token unreadable: {e}",
                    severity=EventSeverity.CRITICAL,
                )
                return False, MSG_VERIFICATION_CORRUPTED
            except StorageFailure as e:
                secret.wipe()
                self._audit().log_vault_event(
                    EventType.VAULT_ERROR,
                    f"Vault unlock error: {e}",
                    severity=EventSeverity.CRITICAL,
                )
                return False, MSG_UNLOCK_FAILED
            except BaseException:
                secret.wipe()
                raise
            finally:
                self._loading = False

            self._enter_unlocked(secret, entries)
            self._audit().log_vault_event(
                EventType.VAULT_UNLOCKED,
                "Vault unlocked successfully",
                details={"entries": len(entries), "skipped": len(skipped)},
            )
            return True, "Vault unlocked successfully!"

    def lock(self) -> None:
        """Lock the vault: zero the password, drop entries, stop the idle timer. Idempotent."""
        with self._lock:
            if self._lock_now():
                self._audit().log_vault_event(EventType.VAULT_LOCKED, "Vault locked")

    def change_password(self, new_password: str) -> Tuple[bool, str]:
        """
        Re-encrypt the whole vault under a new master password.

        All-or-nothing: on failure the vault still opens with the current
        password. If the current password no longer verifies, the session
        locks.

        Returns:
            (success, message)
        """
        with self._lock:
            if self._state is not LockState.UNLOCKED:
                return False, MSG_LOCKED

            is_valid, error_msg = verify_master_password(new_password, self.min_password_length)
            if not is_valid:
                return False, error_msg

            new_secret = SecretPassword(new_password)
            if new_secret == self._password:
                new_secret.wipe()
                return False, "New password must be different from the current password"

            try:
                result = self.authenticator.rotate(self._entries, self._password, new_secret)
            except AuthenticationFailure:
                new_secret.wipe()
                self._lock_now()
                self._audit().log_vault_event(
                    EventType.VAULT_ERROR,
                    "Password change aborted: current password failed re-verification",
                    severity=EventSeverity.ALERT,
                )
                return False, MSG_REVERIFY_FAILED
            except StorageFailure as e:
                new_secret.wipe()
                self._audit().log_vault_event(
                    EventType.VAULT_ERROR,
                    f"Password change failed: {e}",
                    severity=EventSeverity.CRITICAL,
                )
                return False, MSG_CHANGE_FAILED
            except BaseException:
                new_secret.wipe()
                raise

            old_secret, self._password = self._password, new_secret
            old_secret.wipe()
            self._arm_idle_timer()
            self._audit().log_vault_event(
                EventType.VAULT_PASSWORD_CHANGED,
                "Master password changed",
                details={
                    "entries": result.entries,
                    "rewrapped": result.rewrapped,
                    "left_unreadable": len(result.skipped),
                },
            )
            return True, "Master password changed successfully"

    # ── Entries ──────────────────────────────────────────────────────

    def add_entry(self, fields: Optional[Mapping[str, Any]] = None, **kwargs: Any) -> CredentialEntry:
        """
        Encrypt, persist and insert a new entry.

        Raises:
            VaultLockedError: Vault is locked
            ValidationFailure: Missing password or bad field
            StorageFailure: Write failed (entry not added)
        """
        with self._lock:
            self._require_unlocked()
            cleaned = validate_entry_fields({**(fields or {}), **kwargs})

            existing_ids = {e.id for e in self._entries}
            entry_id = self._id_factory()
            while entry_id in existing_ids:
                entry_id = self._id_factory()

            now = self._clock()
            entry = CredentialEntry(id=entry_id, created_at=now, updated_at=now, **cleaned)
            self._persist(entry)
            self._entries = _sorted_entries(self._entries + [entry])
            self._arm_idle_timer()

            self._audit().log_vault_event(
                EventType.ENTRY_ADDED, "Entry added", details={"entry_id": entry.id}
            )
            return entry

    def update_entry(
        self, entry_id: str, fields: Optional[Mapping[str, Any]] = None, **kwargs: Any
    ) -> CredentialEntry:
        """
        Merge fields onto an existing entry; id and created_at are preserved.

        Raises:
            VaultLockedError: Vault is locked
            EntryNotFoundError: No entry with this id
            ValidationFailure: Bad field or emptied password
            StorageFailure: Write failed (entry unchanged)
        """
        with self._lock:
            self._require_unlocked()
            existing = self._find(entry_id)
            updated = existing.merged(
                {**(fields or {}), **kwargs}, max(self._clock(), existing.updated_at)
            )
            self._persist(updated)
            self._entries = _sorted_entries(
                [updated if e.id == entry_id else e for e in self._entries]
            )
            self._arm_idle_timer()

            self._audit().log_vault_event(
                EventType.ENTRY_UPDATED, "Entry updated", details={"entry_id": entry_id}
            )
            return updated

    def delete_entry(self, entry_id: str) -> bool:
        """
        Remove an entry from the store and the entry set. Not reversible.

        Returns:
            True if the entry existed in memory or in the store
        """
        with self._lock:
            self._require_unlocked()
            in_store = self.store.delete_record(entry_id)
            in_memory = any(e.id == entry_id for e in self._entries)
            self._entries = [e for e in self._entries if e.id != entry_id]
            self._arm_idle_timer()

            self._audit().log_vault_event(
                EventType.ENTRY_DELETED, "Entry deleted", details={"entry_id": entry_id}
            )
            return in_store or in_memory

    def get_entry(self, entry_id: str) -> CredentialEntry:
        self._require_unlocked()
        return self._find(entry_id)

    def search_entries(self, query: str) -> List[CredentialEntry]:
        """
        Case-insensitive substring filter over title, url, username and tags.

        A blank query returns every entry in the current order. Returns an
        empty list while locked.
        """
        entries = list(self._entries)
        if not query or not query.strip():
            return entries
        return [e for e in entries if e.matches(query)]

    def import_entries(self, items: Iterable[Mapping[str, Any]]) -> int:
        """
        Add plain entry dicts (already parsed by the caller).

        Items without a title, username or password, or with invalid fields,
        are skipped.

        Returns:
            Number of entries imported
        """
        with self._lock:
            self._require_unlocked()
            imported = 0
            for item in items:
                if not isinstance(item, Mapping):
                    continue
                if not (item.get("title") and item.get("username") and item.get("password")):
                    continue
                fields = {k: item[k] for k in ENTRY_FIELDS if k in item}
                try:
                    self.add_entry(fields)
                except ValidationFailure as e:
                    logger.warning("Skipping import item: %s", e)
                    continue
                imported += 1

            self._audit().log_vault_event(
                EventType.ENTRIES_IMPORTED,
                "Entries imported",
                details={"imported": imported},
            )
            return imported

    def export_entries(self) -> List[Dict[str, Any]]:
        """Plain dicts of every entry, for the caller to format."""
        self._require_unlocked()
        return [e.to_dict() for e in self._entries]

    # ── Activity, preferences, clipboard ─────────────────────────────

    def record_activity(self) -> None:
        """User-activity signal: restart the idle countdown."""
        with self._lock:
            if self._state is LockState.UNLOCKED:
                self._arm_idle_timer()

    def set_auto_lock_timeout(self, minutes: int) -> None:
        """Persist the idle timeout and reschedule the running timer now."""
        with self._lock:
            minutes = validate_duration("autoLockTimeout", minutes)
            self.store.set_item(PREF_AUTO_LOCK_TIMEOUT, str(minutes))
            self.preferences.auto_lock_timeout = minutes
            if self._state is LockState.UNLOCKED:
                self._arm_idle_timer()
            self._preference_changed(PREF_AUTO_LOCK_TIMEOUT, minutes)

    def set_clipboard_clear_time(self, seconds: int) -> None:
        with self._lock:
            seconds = validate_duration("clipboardClearTime", seconds)
            self.store.set_item(PREF_CLIPBOARD_CLEAR_TIME, str(seconds))
            self.preferences.clipboard_clear_time = seconds
            self._preference_changed(PREF_CLIPBOARD_CLEAR_TIME, seconds)

    def set_dark_mode(self, enabled: bool) -> None:
        with self._lock:
            if not isinstance(enabled, bool):
                raise ValidationFailure("darkMode must be a boolean")
            self.store.set_item(PREF_DARK_MODE, "true" if enabled else "false")
            self.preferences.dark_mode = enabled
            self._preference_changed(PREF_DARK_MODE, enabled)

    def set_locale(self, locale: str) -> None:
        with self._lock:
            locale = validate_locale(locale)
            self.store.set_item(PREF_LOCALE, locale)
            self.preferences.locale = locale
            self._preference_changed(PREF_LOCALE, locale)

    def copy_to_clipboard(self, text: str) -> None:
        """Copy text and schedule the clipboard to be cleared."""
        with self._lock:
            self._require_unlocked()
            if self._clipboard_writer is None:
                raise VaultError("No clipboard is configured")
            self._clipboard_writer(text)
            seconds = self.preferences.clipboard_clear_time
            if seconds > 0:
                self._clipboard_timer.arm(seconds)
            else:
                self._clipboard_timer.cancel()

    # ── Internals ────────────────────────────────────────────────────

    def _audit(self) -> AuditLogger:
        return self._audit_logger or get_audit_logger()

    def _require_unlocked(self) -> None:
        if self._state is not LockState.UNLOCKED:
            raise VaultLockedError(MSG_LOCKED)

    def _find(self, entry_id: str) -> CredentialEntry:
        for entry in self._entries:
            if entry.id == entry_id:
                return entry
        raise EntryNotFoundError(f"Entry not found: {entry_id}")

    def _persist(self, entry: CredentialEntry) -> None:
        record = EncryptionService.encrypt(
            encode_entry(entry), self._password, params=self.kdf_params
        )
        self.store.put_record(entry.id, record, created_at=entry.created_at)

    def _load_entries(
        self, secret: SecretPassword
    ) -> Tuple[List[CredentialEntry], List[str]]:
        entries = []
        skipped = []
        for stored in self.store.list_records():
            try:
                entry = decode_entry(EncryptionService.decrypt(stored.record(), secret))
            except (AuthenticationFailure, DecodeError) as e:
                reason = type(e).__name__
            else:
                if entry.id == stored.id:
                    entries.append(entry)
                    continue
                reason = "IdMismatch"

            logger.warning("Skipping vault record %s (%s)", stored.id, reason)
            self._audit().log_vault_event(
                EventType.RECORD_SKIPPED,
                "Record could not be decrypted and was skipped",
                details={"record_id": stored.id, "reason": reason},
                severity=EventSeverity.INVESTIGATE,
            )
            skipped.append(stored.id)
        return _sorted_entries(entries), skipped

    def _enter_unlocked(self, secret: SecretPassword, entries: List[CredentialEntry]) -> None:
        self._password = secret
        self._entries = entries
        self._state = LockState.UNLOCKED
        self._arm_idle_timer()

    def _lock_now(self) -> bool:
        """Wipe session secrets. Returns True if the session was unlocked."""
        was_unlocked = self._state is LockState.UNLOCKED
        self._idle_timer.cancel()
        if self._password is not None:
            self._password.wipe()
            self._password = None
        self._entries = []
        self._state = LockState.LOCKED
        self._loading = False
        return was_unlocked

    def _arm_idle_timer(self) -> None:
        minutes = self.preferences.auto_lock_timeout
        if self._state is LockState.UNLOCKED and minutes > 0:
            self._idle_timer.arm(minutes * 60)
        else:
            self._idle_timer.cancel()

    def _on_idle_timeout(self) -> None:
        with self._lock:
            # Re-armed by activity while this callback waited for the lock
            if self._idle_timer.armed:
                return
            if self._lock_now():
                self._audit().log_vault_event(
                    EventType.VAULT_AUTO_LOCKED,
                    "Vault auto-locked after inactivity",
                    details={"timeout_minutes": self.preferences.auto_lock_timeout},
                )

    def _on_clipboard_timeout(self) -> None:
        if self._clipboard_writer is not None:
            self._clipboard_writer("")

    def _preference_changed(self, key: str, value: Any) -> None:
        self._audit().log_vault_event(
            EventType.PREFERENCE_CHANGED,
            f"Preference changed: {key}",
            details={"key": key, "value": value},
        )


def _sorted_entries(entries: List[CredentialEntry]) -> List[CredentialEntry]:
    return sorted(entries, key=lambda e: e.updated_at, reverse=True)
