"""
Profile data model.

Pure data containers with camelCase dict conversion. The dict shapes are
the ones held in the local cache and in the remote profile store.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Mapping

from biosyn.constants import DEFAULT_LANGUAGE, DEFAULT_THEME


@dataclass(frozen=True)
class UserIdentity:
    """Identity assertion from the sign-in flow."""
    email: str
    name: str
    picture: str | None = None


@dataclass(frozen=True)
class GroundingSource:
    title: str
    uri: str

    @staticmethod
    def from_dict(d: Mapping[str, Any]) -> GroundingSource:
        return GroundingSource(title=str(d.get("title") or "Source"), uri=str(d.get("uri") or ""))

    def to_dict(self) -> dict[str, str]:
        return {"title": self.title, "uri": self.uri}


@dataclass(frozen=True)
class ChatMessage:
    """One chat turn. role is "user" or "model"."""
    role: str
    text: str
    sources: list[GroundingSource] = field(default_factory=list)
    image: str | None = None

    @staticmethod
    def from_dict(d: Mapping[str, Any]) -> ChatMessage:
        return ChatMessage(
            role=str(d["role"]),
            text=str(d.get("text", "")),
            sources=[GroundingSource.from_dict(s) for s in d.get("sources") or []],
            image=d.get("image"),
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"role": self.role, "text": self.text}
        if self.sources:
            out["sources"] = [s.to_dict() for s in self.sources]
        if self.image is not None:
            out["image"] = self.image
        return out


@dataclass(frozen=True)
class UserSettings:
    email_notifications: bool = True
    push_notifications: bool = False
    theme: str = DEFAULT_THEME
    default_language: str = DEFAULT_LANGUAGE

    @staticmethod
    def from_dict(d: Mapping[str, Any]) -> UserSettings:
        return UserSettings(
            email_notifications=bool(d.get("emailNotifications", True)),
            push_notifications=bool(d.get("pushNotifications", False)),
            theme=str(d.get("theme", DEFAULT_THEME)),
            default_language=str(d.get("defaultLanguage", DEFAULT_LANGUAGE)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "emailNotifications": self.email_notifications,
            "pushNotifications": self.push_notifications,
            "theme": self.theme,
            "defaultLanguage": self.default_language,
        }


@dataclass(frozen=True)
class SettingsSnapshot:
    """Composite value stored under the settings cache key."""
    language: str = DEFAULT_LANGUAGE
    consented: bool = False
    onboarded: bool = False
    user_settings: UserSettings = field(default_factory=UserSettings)

    @staticmethod
    def from_dict(d: Mapping[str, Any]) -> SettingsSnapshot:
        raw_settings = d.get("userSettings")
        return SettingsSnapshot(
            language=str(d.get("language") or DEFAULT_LANGUAGE),
            consented=bool(d.get("consented", False)),
            onboarded=bool(d.get("onboarded", False)),
            user_settings=(
                UserSettings.from_dict(raw_settings)
                if isinstance(raw_settings, dict) else UserSettings()
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "language": self.language,
            "consented": self.consented,
            "onboarded": self.onboarded,
            "userSettings": self.user_settings.to_dict(),
        }


@dataclass(frozen=True)
class HealthHistoryItem:
    """
    One past analysis in the user's history.

    full_report is kept as the report's wire dict so history survives
    report schema changes.
    """
    id: str
    date: str
    symptoms: str
    perception: str
    severity: str
    full_report: dict[str, Any]

    @staticmethod
    def from_dict(d: Mapping[str, Any]) -> HealthHistoryItem:
        return HealthHistoryItem(
            id=str(d["id"]),
            date=str(d.get("date", "")),
            symptoms=str(d.get("symptoms", "")),
            perception=str(d.get("perception", "")),
            severity=str(d.get("severity", "")),
            full_report=dict(d.get("fullReport") or {}),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "date": self.date,
            "symptoms": self.symptoms,
            "perception": self.perception,
            "severity": self.severity,
            "fullReport": self.full_report,
        }


@dataclass(frozen=True)
class UserProfile:
    """
    Remote profile document, keyed by email.

    extra preserves fields this client does not model, so a full-document
    upsert never strips data written by another client.
    """
    email: str
    name: str
    picture: str | None = None
    health_history: list[HealthHistoryItem] = field(default_factory=list)
    chat_history: list[ChatMessage] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)

    @staticmethod
    def from_identity(identity: UserIdentity) -> UserProfile:
        return UserProfile(email=identity.email, name=identity.name, picture=identity.picture)

    @staticmethod
    def from_dict(d: Mapping[str, Any]) -> UserProfile:
        known = {"email", "name", "picture", "healthHistory", "chatHistory"}
        return UserProfile(
            email=str(d["email"]),
            name=str(d.get("name") or ""),
            picture=d.get("picture"),
            health_history=[HealthHistoryItem.from_dict(h) for h in d.get("healthHistory") or []],
            chat_history=[ChatMessage.from_dict(m) for m in d.get("chatHistory") or []],
            extra={k: v for k, v in d.items() if k not in known},
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = dict(self.extra)
        out.update({
            "email": self.email,
            "name": self.name,
            "healthHistory": [h.to_dict() for h in self.health_history],
            "chatHistory": [m.to_dict() for m in self.chat_history],
        })
        if self.picture is not None:
            out["picture"] = self.picture
        return out

    def with_chat(self, chat_history: list[ChatMessage]) -> UserProfile:
        return replace(self, chat_history=list(chat_history))


@dataclass
class LocalProfile:
    """
    In-memory application state mirrored by the sync engine.

    Mutable; owned and mutated only by ProfileSyncEngine.
    report is the report's wire dict (or None).
    """
    user: UserProfile | None = None
    report: dict[str, Any] | None = None
    chat_history: list[ChatMessage] = field(default_factory=list)
    settings: SettingsSnapshot = field(default_factory=SettingsSnapshot)

    @property
    def authenticated(self) -> bool:
        return self.user is not None
