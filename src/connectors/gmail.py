"""Gmail mailbox connector."""

import base64
import binascii
import logging
from typing import List, Optional

from src.config import settings
from src.connectors.base import MessageRef, PdfAttachment, ProviderConnector, cursor_bound, is_pdf_filename
from src.imaging.attachment_extractor import count_pdf_pages
from src.imaging.errors import AuthenticationError, ConnectorError
from src.models.monitoring_config import (
    ACTION_ARCHIVE,
    ACTION_DELETE,
    ACTION_MARK_READ,
    ACTION_MOVE,
    ACTION_NONE,
    PROVIDER_GMAIL,
    MonitoringSnapshot,
)

logger = logging.getLogger(__name__)

PAGE_SIZE = 100


def decode_base64url(data: str) -> bytes:
    """Decode Gmail's unpadded base64url payloads."""
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded)


class GmailConnector(ProviderConnector):
    """Reads a Gmail mailbox with an OAuth refresh token.

    Gmail has labels instead of folders: "move" adds the target label and
    removes INBOX, "archive" only removes INBOX, and "delete" moves the
    message to Trash.
    """

    provider = PROVIDER_GMAIL

    @property
    def _messages_url(self) -> str:
        return f"{settings.gmail_api_url}/users/me/messages"

    @property
    def _labels_url(self) -> str:
        return f"{settings.gmail_api_url}/users/me/labels"

    async def authenticate(self, config: MonitoringSnapshot) -> str:
        if not config.gmail_refresh_token:
            raise AuthenticationError("Gmail refresh token is not configured")

        response = await self._request(
            "POST",
            settings.gmail_token_url,
            error_cls=AuthenticationError,
            data={
                "client_id": config.gmail_client_id,
                "client_secret": config.gmail_client_secret,
                "refresh_token": config.gmail_refresh_token,
                "grant_type": "refresh_token",
            },
        )
        token = self._json(response).get("access_token")
        if not token:
            raise AuthenticationError("Gmail token response did not contain an access token")
        return token

    def build_query(self, config: MonitoringSnapshot) -> str:
        query = "has:attachment is:unread"
        label = config.gmail_monitored_label
        if label and label.upper() != "INBOX":
            query += f" label:{label.replace(' ', '-')}"
        else:
            query += " in:inbox"

        since = cursor_bound(config)
        if since is not None:
            query += f" after:{int(since.timestamp())}"
        return query

    async def list_candidate_messages(self, config: MonitoringSnapshot, token: str) -> List[MessageRef]:
        params = {"q": self.build_query(config), "maxResults": PAGE_SIZE}

        ids = []
        seen = set()
        while True:
            data = self._json(await self._request("GET", self._messages_url, token=token, params=params))
            for item in data.get("messages", []):
                if item["id"] not in seen:
                    seen.add(item["id"])
                    ids.append(item["id"])
            page_token = data.get("nextPageToken")
            if not page_token:
                break
            params = {**params, "pageToken": page_token}

        messages = [await self._message_metadata(token, message_id) for message_id in ids]
        logger.info(f"Gmail listed {len(messages)} candidate message(s)")
        return messages

    async def _message_metadata(self, token: str, message_id: str) -> MessageRef:
        try:
            response = await self._request(
                "GET",
                f"{self._messages_url}/{message_id}",
                token=token,
                params=[
                    ("format", "metadata"),
                    ("metadataHeaders", "Subject"),
                    ("metadataHeaders", "From"),
                    ("metadataHeaders", "Date"),
                ],
            )
        except ConnectorError as e:
            # Headers are only used for logging; the message is still processed.
            logger.warning(f"Could not load Gmail headers for {message_id}: {e}")
            return MessageRef(id=message_id)

        headers = {h.get("name"): h.get("value", "") for h in (self._json(response).get("payload") or {}).get("headers", [])}
        return MessageRef(
            id=message_id,
            subject=headers.get("Subject", ""),
            sender=headers.get("From", ""),
            received_at=headers.get("Date", ""),
        )

    async def fetch_pdf_attachments(self, config: MonitoringSnapshot, token: str,
                                    message: MessageRef) -> List[PdfAttachment]:
        data = self._json(await self._request("GET", f"{self._messages_url}/{message.id}", token=token))

        parts = []
        self._collect_pdf_parts(data.get("payload") or {}, parts)

        pdfs = []
        for part in parts:
            filename = part["filename"]
            body = part.get("body") or {}
            if body.get("attachmentId"):
                attachment = self._json(await self._request(
                    "GET", f"{self._messages_url}/{message.id}/attachments/{body['attachmentId']}", token=token
                ))
                encoded = attachment.get("data", "")
            else:
                encoded = body.get("data", "")

            try:
                payload = decode_base64url(encoded)
            except (binascii.Error, ValueError) as e:
                raise ConnectorError(f"Attachment {filename} of message {message.id} is not valid base64") from e
            pdfs.append(PdfAttachment(filename=filename, data=payload, page_count=count_pdf_pages(payload)))

        return pdfs

    def _collect_pdf_parts(self, part: dict, found: list):
        if part.get("parts"):
            for child in part["parts"]:
                self._collect_pdf_parts(child, found)
        elif is_pdf_filename(part.get("filename")):
            body = part.get("body") or {}
            if body.get("attachmentId") or body.get("data"):
                found.append(part)

    async def apply_post_process(self, config: MonitoringSnapshot, token: str, message: MessageRef,
                                 action: str, folder: str) -> None:
        if action == ACTION_NONE:
            return

        if action == ACTION_MARK_READ:
            await self._modify(token, message.id, remove=["UNREAD"])
        elif action == ACTION_MOVE:
            label_id = await self._get_or_create_label(token, folder)
            await self._modify(token, message.id, add=[label_id], remove=["INBOX", "UNREAD"])
        elif action == ACTION_ARCHIVE:
            await self._modify(token, message.id, remove=["INBOX", "UNREAD"])
        elif action == ACTION_DELETE:
            await self._request("POST", f"{self._messages_url}/{message.id}/trash", token=token)
        else:
            raise ConnectorError(f"Unknown post-process action: {action}")

        logger.debug(f"Gmail message {message.id}: {action}")

    async def _modify(self, token: str, message_id: str, add: Optional[list] = None, remove: Optional[list] = None):
        body = {}
        if add:
            body["addLabelIds"] = add
        if remove:
            body["removeLabelIds"] = remove
        await self._request("POST", f"{self._messages_url}/{message_id}/modify", token=token, json=body)

    async def _get_or_create_label(self, token: str, name: str) -> str:
        data = self._json(await self._request("GET", self._labels_url, token=token))
        for label in data.get("labels", []):
            if label.get("name") == name:
                return label["id"]

        created = self._json(await self._request(
            "POST",
            self._labels_url,
            token=token,
            json={"name": name, "labelListVisibility": "labelShow", "messageListVisibility": "show"},
        ))
        if not created.get("id"):
            raise ConnectorError(f"Gmail did not return an id for new label '{name}'")
        logger.info(f"Created Gmail label '{name}'")
        return created["id"]
