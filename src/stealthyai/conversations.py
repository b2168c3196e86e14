"""In-memory conversation store with selection, drafts, import/export and pairing."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from pathlib import Path
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from .config import (
    ARCHIVE_VERSION,
    DEFAULT_CONVERSATION_TITLE,
    PAIRING_REGENERATE_THROTTLE_SECONDS,
    PAIRING_TTL_SECONDS,
)
from .models import (
    Alert,
    Conversation,
    ConversationsArchive,
    FlagColor,
    Message,
    MessageRole,
    PairingToken,
    clean_tags,
    derive_title,
    has_placeholder_title,
    utcnow,
)
from .pairing import PairingError, PairingService, unsigned_link
from .replies import ReplySimulator
from .storage import (
    ArchiveDecodeError,
    ConversationFile,
    decode_archive,
    encode_archive,
    write_atomic,
)

logger = logging.getLogger(__name__)


class Draft(BaseModel):
    """A conversation that exists only until its first message is sent."""

    temp_id: UUID = Field(default_factory=uuid4)
    title: str = DEFAULT_CONVERSATION_TITLE


class ConversationStore:
    """Owns the conversation list and everything the chat UI mutates.

    Selection moves through three states: nothing selected, a draft being
    written (``selected_id`` is the draft's temporary id), or an existing
    conversation. Every mutation persists through the conversation file
    before returning. Assistant replies are simulated by ``replies``.
    """

    def __init__(
        self,
        file: ConversationFile,
        pairing: PairingService,
        replies: ReplySimulator | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.file = file
        self.pairing = pairing
        self.clock = clock
        self.replies = replies or ReplySimulator(clock=clock)

        self.conversations: list[Conversation] = file.load()
        self.selected_id: UUID | None = None
        self.draft: Draft | None = None

        self.alert: Alert | None = None

        self.pending_import: ConversationsArchive | None = None
        self.show_import_confirmation = False

        self.rename_target_id: UUID | None = None
        self.rename_draft = ""
        self.show_rename_sheet = False

        self.delete_target_id: UUID | None = None
        self.show_delete_confirm = False

        self.show_pairing_sheet = False
        self.pairing_token: PairingToken | None = None
        self.pairing_deep_link: str | None = None
        self.pairing_regenerate_disabled_until: datetime | None = None

    # -- lookup -----------------------------------------------------------

    def get(self, conversation_id: UUID) -> Conversation | None:
        for conversation in self.conversations:
            if conversation.id == conversation_id:
                return conversation
        return None

    @property
    def selected_conversation(self) -> Conversation | None:
        if self.selected_id is None:
            return None
        return self.get(self.selected_id)

    @property
    def is_viewing_draft(self) -> bool:
        return self.draft is not None and self.selected_id == self.draft.temp_id

    # -- derived lists ----------------------------------------------------

    @property
    def visible_conversations(self) -> list[Conversation]:
        return [c for c in self.conversations if not c.is_archived]

    @property
    def archived_conversations(self) -> list[Conversation]:
        return [c for c in self.conversations if c.is_archived]

    @property
    def flagged_conversations(self) -> list[Conversation]:
        flagged = [c for c in self.visible_conversations if c.is_flagged]
        return sorted(flagged, key=lambda c: c.flagged_at, reverse=True)

    @property
    def unflagged_conversations(self) -> list[Conversation]:
        unflagged = [c for c in self.visible_conversations if not c.is_flagged]
        return sorted(unflagged, key=lambda c: c.updated_at, reverse=True)

    @property
    def pinned_conversations(self) -> list[Conversation]:
        pinned = [c for c in self.visible_conversations if c.is_pinned]
        return sorted(pinned, key=lambda c: c.pinned_at, reverse=True)

    def search(self, query: str) -> list[Conversation]:
        """Visible conversations whose title contains ``query``, ignoring case."""
        q = query.strip().casefold()
        if not q:
            return self.visible_conversations
        return [c for c in self.visible_conversations if q in c.title.casefold()]

    # -- persistence ------------------------------------------------------

    def save(self) -> None:
        self.file.save(self.conversations)

    def close(self) -> None:
        """Stop streaming replies and write the final state."""
        self.replies.cancel_all()
        self.save()

    async def wait_for_replies(self) -> None:
        await self.replies.wait()

    # -- selection and drafts --------------------------------------------

    def select(self, conversation_id: UUID | None) -> None:
        """Navigate to a conversation, discarding what was left behind empty."""
        previous = self.selected_id
        if previous == conversation_id:
            return
        if self.is_viewing_draft:
            self.discard_draft()
        elif previous is not None:
            self.delete_if_empty(previous)
        self.selected_id = conversation_id

    def start_new_conversation_draft(self) -> Draft:
        previous = self.selected_id
        leaving_draft = self.is_viewing_draft
        self.discard_draft()
        if not leaving_draft and previous is not None:
            self.delete_if_empty(previous)
        self.draft = Draft()
        self.selected_id = self.draft.temp_id
        return self.draft

    def discard_draft(self) -> None:
        # Selection is left to the caller.
        self.draft = None

    def create_empty_conversation(self, title: str = DEFAULT_CONVERSATION_TITLE) -> UUID:
        now = self.clock()
        conversation = Conversation(title=title, created_at=now, updated_at=now)
        self.conversations.insert(0, conversation)
        self.selected_id = conversation.id
        self.save()
        return conversation.id

    def commit_draft(self, first_message: str) -> UUID | None:
        """Turn the current draft into a real conversation holding ``first_message``."""
        if self.draft is None:
            return None
        text = first_message.strip()
        if not text:
            return None

        now = self.clock()
        conversation = Conversation(
            title=derive_title(text) or self.draft.title,
            messages=[Message(content=text, role=MessageRole.USER, timestamp=now)],
            created_at=now,
            updated_at=now,
        )
        self.conversations.insert(0, conversation)
        self.selected_id = conversation.id
        self.draft = None
        self.save()
        logger.debug("Committed draft as conversation %s", conversation.id)
        return conversation.id

    # -- messaging --------------------------------------------------------

    def send(self, text: str) -> UUID | None:
        """Send a user message to the draft or selected conversation.

        Returns the id of the conversation that received the message, or
        None when nothing was sent.
        """
        text = text.strip()
        if not text:
            return None

        if self.is_viewing_draft:
            conversation_id = self.commit_draft(text)
            if conversation_id is not None:
                self._start_reply(conversation_id, text)
            return conversation_id

        conversation = self.selected_conversation
        if conversation is None:
            return None

        now = self.clock()
        if not conversation.messages and has_placeholder_title(conversation):
            conversation.title = derive_title(text)
        conversation.messages.append(Message(content=text, role=MessageRole.USER, timestamp=now))
        conversation.updated_at = now
        self.save()
        self._start_reply(conversation.id, text)
        return conversation.id

    def _start_reply(self, conversation_id: UUID, prompt: str) -> None:
        self.replies.start(conversation_id, prompt, self.get, lambda _: self.save())

    # -- editing ----------------------------------------------------------

    def rename_conversation(self, conversation_id: UUID, title: str) -> None:
        conversation = self.get(conversation_id)
        title = title.strip()
        if conversation is None or not title:
            return
        conversation.title = title
        conversation.updated_at = self.clock()
        self.save()

    def request_rename(self, conversation_id: UUID) -> None:
        conversation = self.get(conversation_id)
        if conversation is None:
            return
        self.rename_target_id = conversation_id
        self.rename_draft = conversation.title
        self.show_rename_sheet = True

    def confirm_rename(self) -> None:
        if self.rename_target_id is not None:
            self.rename_conversation(self.rename_target_id, self.rename_draft)
        self.cancel_rename()

    def cancel_rename(self) -> None:
        self.show_rename_sheet = False
        self.rename_target_id = None
        self.rename_draft = ""

    def set_conversation_tags(self, conversation_id: UUID, tags: list[str]) -> None:
        conversation = self.get(conversation_id)
        if conversation is None:
            return
        conversation.tags = clean_tags(tags)
        conversation.updated_at = self.clock()
        self.save()

    def set_conversation_icon(
        self,
        conversation_id: UUID,
        symbol: str | None,
        color: FlagColor | None = None,
    ) -> None:
        conversation = self.get(conversation_id)
        if conversation is None:
            return
        conversation.icon_symbol = symbol
        conversation.icon_color = color
        conversation.updated_at = self.clock()
        self.save()

    # -- archive, flag, pin -----------------------------------------------

    def archive_conversation(self, conversation_id: UUID) -> None:
        conversation = self.get(conversation_id)
        if conversation is None:
            return
        conversation.is_archived = True
        conversation.updated_at = self.clock()
        if self.selected_id == conversation_id:
            self.selected_id = None
        self.save()

    def unarchive_conversation(self, conversation_id: UUID) -> None:
        conversation = self.get(conversation_id)
        if conversation is None:
            return
        conversation.is_archived = False
        conversation.updated_at = self.clock()
        self.save()

    def flag_conversation(
        self, conversation_id: UUID, color: FlagColor | None = FlagColor.ORANGE
    ) -> None:
        conversation = self.get(conversation_id)
        if conversation is None:
            return
        now = self.clock()
        conversation.flag(color, now)
        conversation.updated_at = now
        self.save()

    def unflag_conversation(self, conversation_id: UUID) -> None:
        conversation = self.get(conversation_id)
        if conversation is None:
            return
        conversation.unflag()
        conversation.updated_at = self.clock()
        self.save()

    def toggle_pin(self, conversation_id: UUID) -> None:
        conversation = self.get(conversation_id)
        if conversation is None:
            return
        now = self.clock()
        conversation.pinned_at = None if conversation.is_pinned else now
        conversation.updated_at = now
        self.save()

    # -- deletion ---------------------------------------------------------

    def delete_conversation(self, conversation_id: UUID) -> None:
        conversation = self.get(conversation_id)
        if conversation is None:
            return

        if self.selected_id == conversation_id:
            remaining = [
                c for c in self.conversations
                if not c.is_archived and c.id != conversation_id
            ]
            self.selected_id = remaining[0].id if remaining else None

        self.replies.cancel(conversation_id)
        self.conversations = [c for c in self.conversations if c.id != conversation_id]
        self.save()
        logger.debug("Deleted conversation %s", conversation_id)

    def delete_if_empty(self, conversation_id: UUID) -> None:
        conversation = self.get(conversation_id)
        if conversation is not None and not conversation.messages:
            self.delete_conversation(conversation_id)

    def request_delete(self, conversation_id: UUID) -> None:
        self.delete_target_id = conversation_id
        self.show_delete_confirm = True

    def confirm_delete(self) -> None:
        if self.delete_target_id is not None:
            self.delete_conversation(self.delete_target_id)
        self.cancel_delete()

    def cancel_delete(self) -> None:
        self.show_delete_confirm = False
        self.delete_target_id = None

    # -- export / import --------------------------------------------------

    def start_export(self) -> ConversationsArchive:
        return ConversationsArchive(
            version=ARCHIVE_VERSION,
            conversations=[c.model_copy(deep=True) for c in self.conversations],
        )

    def handle_export_result(
        self, path: Path, count: int, error: Exception | None = None
    ) -> None:
        """Report how an export written by someone else turned out."""
        if error is not None:
            self._show_alert("Export Failed", f"Could not export conversations: {error}")
        else:
            self._show_alert(
                "Export Successful", f"{count} conversation(s) exported to {path.name}"
            )

    def export_to(self, path: Path) -> bool:
        archive = self.start_export()
        try:
            write_atomic(path, encode_archive(archive))
        except OSError as e:
            logger.warning("Export to %s failed", path, exc_info=True)
            self.handle_export_result(path, len(archive.conversations), e)
            return False
        self.handle_export_result(path, len(archive.conversations))
        return True

    def handle_import(self, path: Path) -> bool:
        """Read and decode ``path`` and stage it for confirmation.

        Nothing in the store changes until ``confirm_import`` is called.
        """
        try:
            data = path.read_bytes()
        except PermissionError:
            self._show_alert("Import Failed", "Access was denied to the selected file.")
            return False
        except OSError as e:
            self._show_alert("Import Failed", f"Could not import conversations: {e}")
            return False

        try:
            archive = decode_archive(data)
        except ArchiveDecodeError as e:
            logger.warning("Rejected import from %s", path, exc_info=True)
            self._show_alert("Import Failed", f"Could not import conversations: {e}")
            return False

        self.pending_import = archive
        self.show_import_confirmation = True
        return True

    def confirm_import(self) -> None:
        archive = self.pending_import
        if archive is None:
            return

        self.replies.cancel_all()
        self.conversations = archive.conversations
        self.draft = None
        self.selected_id = self.conversations[0].id if self.conversations else None
        self.save()
        self._show_alert(
            "Import Successful",
            f"Imported {len(archive.conversations)} conversation(s) (version {archive.version})",
        )
        self.pending_import = None
        self.show_import_confirmation = False

    def cancel_import(self) -> None:
        self.pending_import = None
        self.show_import_confirmation = False

    # -- alerts -----------------------------------------------------------

    def _show_alert(self, title: str, message: str) -> None:
        self.alert = Alert(title=title, message=message)

    def dismiss_alert(self) -> None:
        self.alert = None

    # -- pairing ----------------------------------------------------------

    @property
    def pairing_is_expired(self) -> bool:
        return self.pairing_token is None or self.pairing_token.is_expired(self.clock())

    def open_pairing_sheet(self) -> None:
        self._set_new_token()
        self.show_pairing_sheet = True

    def regenerate_pairing_token(self) -> bool:
        """Issue a new token unless one was issued less than a second ago."""
        now = self.clock()
        if (
            self.pairing_regenerate_disabled_until is not None
            and now < self.pairing_regenerate_disabled_until
        ):
            return False
        self._set_new_token()
        self.pairing_regenerate_disabled_until = now + timedelta(
            seconds=PAIRING_REGENERATE_THROTTLE_SECONDS
        )
        return True

    def close_pairing_sheet(self) -> None:
        self.show_pairing_sheet = False

    def _set_new_token(self, ttl: float = PAIRING_TTL_SECONDS) -> None:
        token = self.pairing.generate_token(ttl)
        try:
            link = self.pairing.deep_link(token)
        except PairingError:
            logger.warning("Falling back to an unsigned pairing link", exc_info=True)
            link = unsigned_link(token.uuid, self.pairing.scheme, self.pairing.host)
        self.pairing_token = token
        self.pairing_deep_link = link
