"""
Voice preferences: schema, validation and persistence.

All voice configuration lives in one `Preferences` document. It changes only
through `PreferencesStore.update()`, which validates the whole merged
candidate and either commits it (and schedules a debounced write) or returns
the field errors and leaves the current state untouched.

On disk each device has one JSON record:

    {"schemaVersion": "4.1.0", "lastModified": "...", "deviceId": "...",
     "preferences": {...camelCase fields...}}

written atomically next to a `.bak` copy of the previous version.
"""

from __future__ import annotations

import copy
import json
import os
import shutil
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

from logging_setup import get_logger, Component
from observability.events import Component as EventComponent, EventEmitter, Severity

from .errors import PreferencesValidationError
from .grammar import Template, TemplateError
from .models import CATEGORY_PRIORITY
from .timers import CoalescingTimer

logger = get_logger(Component.PREFERENCES)
emitter = EventEmitter(EventComponent.PREFERENCES)

SCHEMA_VERSION = "4.1.0"
DEFAULT_DEBOUNCE_SECONDS = 0.5

SUPPORTED_LANGUAGES: Dict[str, List[str]] = {
    "de-CH": ["ZH", "BE", "BS", "LU", "SG", "AG", "TG", "GR", "SO", "SH"],
    "fr-CH": [],
    "it-CH": [],
    "de-DE": [],
    "de-AT": [],
    "it-IT": [],
    "fr-FR": [],
    "en-US": [],
    "en-GB": [],
}

SAMPLE_RATES = (8000, 16000, 22050, 44100, 48000)
BUFFER_SIZES = (256, 512, 1024, 2048, 4096, 8192, 16384)


class _Schema(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class MicrophoneSettings(_Schema):
    device_id: Optional[str] = None
    sensitivity: float = Field(0.75, ge=0.0, le=1.0)
    noise_reduction: bool = True
    echo_cancellation: bool = True
    auto_gain_control: bool = True
    sample_rate: int = 16000
    buffer_size: int = 4096

    @field_validator("sample_rate")
    @classmethod
    def _check_sample_rate(cls, v: int) -> int:
        if v not in SAMPLE_RATES:
            raise ValueError(f"must be one of {', '.join(map(str, SAMPLE_RATES))}")
        return v

    @field_validator("buffer_size")
    @classmethod
    def _check_buffer_size(cls, v: int) -> int:
        if v not in BUFFER_SIZES:
            raise ValueError(f"must be one of {', '.join(map(str, BUFFER_SIZES))}")
        return v


class SpeakerSettings(_Schema):
    device_id: Optional[str] = None
    volume: float = Field(0.8, ge=0.0, le=1.0)
    voice: Optional[str] = None
    rate: float = Field(1.0, ge=0.1, le=3.0)
    pitch: float = Field(1.0, ge=0.0, le=2.0)


class RecognitionSettings(_Schema):
    continuous: bool = True
    interim_results: bool = True
    max_alternatives: int = Field(3, ge=1, le=10)
    confidence_threshold: float = Field(0.7, ge=0.0, le=1.0)
    timeout_duration: int = Field(5000, ge=0, le=30000)
    partial_timeout: int = Field(1000, ge=500, le=5000)
    max_recording_time: int = Field(30000, ge=5000, le=300000)


class FeedbackSettings(_Schema):
    enabled: bool = True
    speak_confirmations: bool = True
    speak_errors: bool = True
    visual_feedback: bool = True
    sound_effects: bool = True


class PrivacySettings(_Schema):
    save_history: bool = True
    share_analytics: bool = False
    cloud_sync: bool = False
    data_retention: int = Field(30, ge=1, le=365)


class CustomCommand(_Schema):
    intent: str = Field(min_length=1)
    templates: List[str] = Field(min_length=1)
    category: str = "system"
    examples: List[str] = Field(default_factory=list)
    route: Optional[str] = None

    @field_validator("templates")
    @classmethod
    def _check_templates(cls, v: List[str]) -> List[str]:
        for source in v:
            try:
                Template(source)
            except TemplateError as e:
                raise ValueError(f"invalid template {source!r}: {e}") from e
        return v

    @field_validator("category")
    @classmethod
    def _check_category(cls, v: str) -> str:
        allowed = [c.value for c in CATEGORY_PRIORITY]
        if v not in allowed:
            raise ValueError(f"must be one of {', '.join(allowed)}")
        return v


class AdvancedSettings(_Schema):
    auto_process: bool = True
    debug_mode: bool = False
    custom_commands: List[CustomCommand] = Field(default_factory=list)


class UsageStatistics(_Schema):
    total_commands: int = Field(0, ge=0)
    successful_commands: int = Field(0, ge=0)
    failed_commands: int = Field(0, ge=0)
    average_confidence: float = Field(0.0, ge=0.0, le=1.0)
    favorite_commands: Dict[str, int] = Field(default_factory=dict)
    errors_by_category: Dict[str, int] = Field(default_factory=dict)
    last_used: Optional[datetime] = None


class Preferences(_Schema):
    language: str = "de-CH"
    dialect: Optional[str] = "ZH"
    enabled: bool = True
    wake_word: str = "hey eatech"
    wake_word_enabled: bool = True
    microphone: MicrophoneSettings = Field(default_factory=MicrophoneSettings)
    speaker: SpeakerSettings = Field(default_factory=SpeakerSettings)
    recognition: RecognitionSettings = Field(default_factory=RecognitionSettings)
    feedback: FeedbackSettings = Field(default_factory=FeedbackSettings)
    privacy: PrivacySettings = Field(default_factory=PrivacySettings)
    advanced: AdvancedSettings = Field(default_factory=AdvancedSettings)
    stats: UsageStatistics = Field(default_factory=UsageStatistics)

    @field_validator("language")
    @classmethod
    def _check_language(cls, v: str) -> str:
        if v not in SUPPORTED_LANGUAGES:
            raise ValueError(f"unsupported language {v!r}")
        return v

    @model_validator(mode="after")
    def _check_dialect(self) -> "Preferences":
        dialects = SUPPORTED_LANGUAGES.get(self.language, [])
        if self.dialect is not None and self.dialect not in dialects:
            raise ValueError(f"dialect {self.dialect!r} is not available for {self.language}")
        return self


@dataclass
class FieldError:
    location: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {"location": self.location, "message": self.message}


@dataclass
class UpdateResult:
    ok: bool
    errors: List[FieldError] = field(default_factory=list)
    preferences: Optional[Preferences] = None


Partial = Dict[str, Any]
Updater = Union[Partial, Callable[[Preferences], Union[Partial, Preferences]]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def field_errors(error: ValidationError) -> List[FieldError]:
    errors = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"]) or "preferences"
        errors.append(FieldError(location=location, message=item["msg"]))
    return errors


def deep_merge(base: Dict[str, Any], patch: Dict[str, Any]) -> Dict[str, Any]:
    """Recursive dict merge; lists and scalars in `patch` replace."""
    result = dict(base)
    for key, value in patch.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def to_aliases(model: Type[BaseModel], data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Rewrite field names in `data` (snake_case or camelCase) to the model's
    camelCase aliases, recursing into nested models. Unknown keys are kept so
    validation can report them.
    """
    result: Dict[str, Any] = {}
    for key, value in data.items():
        target, nested = key, None
        for name, info in model.model_fields.items():
            if key in (name, info.alias):
                target = info.alias or name
                annotation = info.annotation
                if isinstance(annotation, type) and issubclass(annotation, BaseModel):
                    nested = annotation
                break
        if nested is not None and isinstance(value, dict):
            value = to_aliases(nested, value)
        result[target] = value
    return result


def _version_tuple(version: Any) -> tuple:
    if isinstance(version, int):
        return (version, 0, 0)
    try:
        return tuple(int(part) for part in str(version or "1.0.0").split("."))
    except ValueError:
        return (1, 0, 0)


def _drop_unknown(model: Type[BaseModel], data: Dict[str, Any]) -> Dict[str, Any]:
    known = {}
    for name, info in model.model_fields.items():
        for key in (info.alias, name):
            if key in data:
                value = data[key]
                annotation = info.annotation
                if isinstance(annotation, type) and issubclass(annotation, BaseModel) and isinstance(value, dict):
                    value = _drop_unknown(annotation, value)
                known[info.alias or name] = value
                break
    return known


def migrate(record: Dict[str, Any]) -> Dict[str, Any]:
    """
    Bring a stored record forward to SCHEMA_VERSION.

    1.x kept voice output under `voiceSettings`; 2.x called it `tts` and mixed
    speaker parameters into it; dialects were stored as "de-CH-ZH". Fields
    that no longer exist are dropped.
    """
    record = copy.deepcopy(record)
    version = _version_tuple(record.get("schemaVersion") or record.get("version"))
    prefs = dict(record.get("preferences") or {})

    if version < (2, 0, 0) and "voiceSettings" in prefs:
        prefs["tts"] = prefs.pop("voiceSettings")

    if version < (4, 0, 0) and isinstance(prefs.get("tts"), dict):
        tts = dict(prefs.pop("tts"))
        speaker = dict(prefs.get("speaker") or {})
        for key in ("rate", "pitch", "volume", "voice"):
            if key in tts:
                speaker.setdefault(key, tts.pop(key))
        prefs["speaker"] = speaker
        renamed = {"confirmations": "speakConfirmations", "errors": "speakErrors"}
        prefs["feedback"] = {renamed.get(k, k): v for k, v in tts.items()}

    dialect = prefs.get("dialect")
    if isinstance(dialect, str) and dialect.count("-") == 2:
        prefs["dialect"] = dialect.rsplit("-", 1)[1]

    if version < _version_tuple(SCHEMA_VERSION):
        logger.info(
            "Migrating preferences record",
            from_version=str(record.get("schemaVersion") or record.get("version") or "1.0.0"),
            to_version=SCHEMA_VERSION,
        )

    record["preferences"] = _drop_unknown(Preferences, prefs)
    record["schemaVersion"] = SCHEMA_VERSION
    record.pop("version", None)
    return record


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return datetime.min.replace(tzinfo=timezone.utc)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


class PreferencesStore:
    """
    Owner of the live Preferences document for one device.

    `remote` is optional; when set and `privacy.cloudSync` is on, load()
    reconciles with it and persisted records are pushed to it.
    """

    def __init__(
        self,
        directory: Union[str, Path],
        device_id: str = "default",
        *,
        debounce_s: float = DEFAULT_DEBOUNCE_SECONDS,
        remote: Any = None,
        session_id: str = "local",
        sleep: Optional[Callable[[float], Any]] = None,
    ):
        self.directory = Path(directory)
        self.device_id = device_id
        self.remote = remote
        self.session_id = session_id
        self._preferences = Preferences()
        self._last_modified = _utcnow()
        self._dirty = False
        self._listeners: List[Callable[[Preferences], Any]] = []
        timer_kwargs = {"sleep": sleep} if sleep is not None else {}
        self._timer = CoalescingTimer(debounce_s, self.flush, name="preferences_persist", **timer_kwargs)

    @property
    def path(self) -> Path:
        return self.directory / f"{self.device_id}.json"

    @property
    def backup_path(self) -> Path:
        return self.directory / f"{self.device_id}.json.bak"

    @property
    def preferences(self) -> Preferences:
        """A copy of the current document; mutate only through update()."""
        return self._preferences.model_copy(deep=True)

    @property
    def dirty(self) -> bool:
        return self._dirty

    @property
    def persist_pending(self) -> bool:
        return self._timer.pending

    def subscribe(self, listener: Callable[[Preferences], Any]) -> None:
        """Call `listener` with the new document after every committed change."""
        self._listeners.append(listener)

    def update(self, changes: Updater) -> UpdateResult:
        """
        Merge `changes` into the current document and commit if the result is valid.

        `changes` is a partial document (snake_case or camelCase keys) or a
        function of the current document returning one.
        """
        current = self._preferences
        patch = changes(current.model_copy(deep=True)) if callable(changes) else changes
        if isinstance(patch, Preferences):
            candidate_data = patch.model_dump(by_alias=True)
        else:
            candidate_data = deep_merge(current.model_dump(by_alias=True), to_aliases(Preferences, patch or {}))

        try:
            candidate = Preferences.model_validate(candidate_data)
        except ValidationError as e:
            errors = field_errors(e)
            logger.warning(
                "Preferences update rejected",
                errors=[err.to_dict() for err in errors],
            )
            emitter.emit(
                "preferences.rejected",
                session_id=self.session_id,
                severity=Severity.WARN,
                errors=[err.to_dict() for err in errors],
            )
            return UpdateResult(ok=False, errors=errors, preferences=self.preferences)

        changed = self._changed_fields(current, candidate)
        self._commit(candidate)
        emitter.emit("preferences.updated", session_id=self.session_id, fields=changed)
        return UpdateResult(ok=True, preferences=self.preferences)

    def _commit(self, candidate: Preferences) -> None:
        self._preferences = candidate
        self._last_modified = _utcnow()
        self._dirty = True
        self._timer.schedule()
        self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self.preferences)
            except Exception as e:
                logger.error("Preferences listener failed", error=str(e), error_type=type(e).__name__)

    @staticmethod
    def _changed_fields(old: Preferences, new: Preferences) -> List[str]:
        before = old.model_dump(by_alias=True, mode="json")
        after = new.model_dump(by_alias=True, mode="json")
        changed = []
        for section, value in after.items():
            if isinstance(value, dict) and isinstance(before.get(section), dict):
                changed.extend(f"{section}.{k}" for k, v in value.items() if before[section].get(k) != v)
            elif before.get(section) != value:
                changed.append(section)
        return changed

    # --- convenience setters ---

    def set_language(self, language: str, dialect: Optional[str] = None) -> UpdateResult:
        """Switch language; the dialect resets to the language's first one unless given."""
        if dialect is None:
            dialects = SUPPORTED_LANGUAGES.get(language) or [None]
            dialect = dialects[0]
        return self.update({"language": language, "dialect": dialect})

    def set_dialect(self, dialect: Optional[str]) -> UpdateResult:
        return self.update({"dialect": dialect})

    def record_command(self, intent: Optional[str], confidence: float, success: bool) -> UpdateResult:
        """Fold one processed command into the usage statistics."""
        def apply(prefs: Preferences) -> Partial:
            stats = prefs.stats
            total = stats.total_commands + 1
            favorites = dict(stats.favorite_commands)
            if intent and success:
                favorites[intent] = favorites.get(intent, 0) + 1
            return {"stats": {
                "totalCommands": total,
                "successfulCommands": stats.successful_commands + (1 if success else 0),
                "failedCommands": stats.failed_commands + (0 if success else 1),
                "averageConfidence": stats.average_confidence + (min(max(confidence, 0.0), 1.0) - stats.average_confidence) / total,
                "favoriteCommands": favorites,
                "lastUsed": _utcnow(),
            }}
        return self.update(apply)

    def record_error(self, category: str) -> UpdateResult:
        def apply(prefs: Preferences) -> Partial:
            errors = dict(prefs.stats.errors_by_category)
            errors[category] = errors.get(category, 0) + 1
            return {"stats": {"errorsByCategory": errors}}
        return self.update(apply)

    def usage_statistics(self) -> Dict[str, Any]:
        stats = self._preferences.stats
        favorites = sorted(stats.favorite_commands.items(), key=lambda kv: (-kv[1], kv[0]))
        return {
            "totalCommands": stats.total_commands,
            "successfulCommands": stats.successful_commands,
            "failedCommands": stats.failed_commands,
            "successRate": round(stats.successful_commands / stats.total_commands, 4) if stats.total_commands else 0.0,
            "averageConfidence": round(stats.average_confidence, 4),
            "favoriteCommands": [{"intent": k, "count": v} for k, v in favorites[:5]],
            "errorsByCategory": dict(stats.errors_by_category),
            "lastUsed": stats.last_used.isoformat() if stats.last_used else None,
        }

    # --- export / import / reset ---

    def export(self) -> Dict[str, Any]:
        return self._record(self._preferences, self._last_modified)

    def import_(self, document: Dict[str, Any]) -> Preferences:
        """
        Replace the current document with an exported record (or a bare
        preferences mapping). Raises PreferencesValidationError when invalid.
        """
        record = document if "preferences" in document else {"schemaVersion": SCHEMA_VERSION, "preferences": document}
        record = migrate(record)
        try:
            candidate = Preferences.model_validate(record["preferences"])
        except ValidationError as e:
            raise PreferencesValidationError("Imported preferences are invalid", errors=field_errors(e)) from e
        self._commit(candidate)
        emitter.emit("preferences.updated", session_id=self.session_id, fields=["*"], source="import")
        return self.preferences

    def reset(self, keep_statistics: bool = False) -> Preferences:
        fresh = Preferences()
        if keep_statistics:
            fresh = fresh.model_copy(update={"stats": self._preferences.stats})
        self._commit(fresh)
        emitter.emit("preferences.updated", session_id=self.session_id, fields=["*"], source="reset")
        return self.preferences

    # --- persistence ---

    def _record(self, prefs: Preferences, last_modified: datetime) -> Dict[str, Any]:
        return {
            "schemaVersion": SCHEMA_VERSION,
            "lastModified": last_modified.isoformat(),
            "deviceId": self.device_id,
            "preferences": prefs.model_dump(by_alias=True, mode="json"),
        }

    def _write_local(self, record: Dict[str, Any]) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        if self.path.exists():
            shutil.copyfile(self.path, self.backup_path)
        tmp = self.path.with_suffix(".json.tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(record, f, ensure_ascii=False, indent=2)
        os.replace(tmp, self.path)

    async def flush(self) -> bool:
        """
        Write the current document now (cancelling any pending debounced write).

        Returns False when there was nothing to write.
        """
        self._timer.cancel()
        if not self._dirty:
            return False
        record = self._record(self._preferences, self._last_modified)
        self._write_local(record)
        self._dirty = False
        pushed = None
        if self.remote is not None and self._preferences.privacy.cloud_sync:
            pushed = await self.remote.push(self.device_id, record)
        emitter.emit(
            "preferences.persisted",
            session_id=self.session_id,
            path=str(self.path),
            remote_pushed=pushed,
        )
        logger.info("Preferences persisted", device_id=self.device_id, remote_pushed=pushed)
        return True

    def _read_record(self, path: Path) -> Optional[Dict[str, Any]]:
        try:
            with open(path, encoding="utf-8") as f:
                record = json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Unreadable preferences file", path=str(path), error=str(e), error_type=type(e).__name__)
            return None
        if not isinstance(record, dict):
            logger.warning("Preferences file is not a mapping", path=str(path))
            return None
        return record

    def _validated(self, record: Optional[Dict[str, Any]], source: str) -> Optional[tuple]:
        if record is None:
            return None
        record = migrate(record)
        try:
            prefs = Preferences.model_validate(record["preferences"])
        except ValidationError as e:
            logger.warning(
                "Stored preferences are invalid",
                source=source,
                errors=[err.to_dict() for err in field_errors(e)],
            )
            return None
        return prefs, _parse_timestamp(record.get("lastModified"))

    async def load(self) -> Preferences:
        """
        Load the device record (backup if the main file is unusable), migrate
        it, and reconcile with the remote copy when cloud sync is on.
        """
        local = self._validated(self._read_record(self.path), "local")
        if local is None:
            local = self._validated(self._read_record(self.backup_path), "backup")

        if local is not None:
            self._preferences, self._last_modified = local
        else:
            logger.info("No stored preferences; using defaults", device_id=self.device_id)
            self._preferences, self._last_modified = Preferences(), _utcnow()

        if self.remote is not None and self._preferences.privacy.cloud_sync:
            remote = self._validated(await self.remote.fetch(self.device_id), "remote")
            if remote is not None and (local is None or remote[1] > self._last_modified):
                logger.info("Remote preferences are newer; adopting", device_id=self.device_id)
                self._preferences, self._last_modified = remote
                self._write_local(self._record(*remote))
            elif local is not None and (remote is None or local[1] > remote[1]):
                await self.remote.push(self.device_id, self._record(*local))

        self._dirty = False
        self._notify()
        return self.preferences

    async def aclose(self) -> None:
        if self._dirty:
            await self.flush()
