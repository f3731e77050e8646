"""Office365 (Microsoft Graph) mailbox connector."""

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
    PROVIDER_OFFICE365,
    MonitoringSnapshot,
)

logger = logging.getLogger(__name__)

ARCHIVE_FOLDER = "Archive"
DELETED_ITEMS_FOLDER = "deleteditems"  # Graph well-known folder name
PAGE_SIZE = 50


class Office365Connector(ProviderConnector):
    """Reads a shared mailbox through Microsoft Graph with app-only credentials."""

    provider = PROVIDER_OFFICE365

    def _mailbox_url(self, config: MonitoringSnapshot) -> str:
        if not config.monitored_email:
            raise ConnectorError("Office365 monitored mailbox is not configured")
        return f"{settings.office365_graph_url}/users/{config.monitored_email}"

    async def authenticate(self, config: MonitoringSnapshot) -> str:
        if not config.tenant_id:
            raise AuthenticationError("Office365 tenant id is not configured")

        response = await self._request(
            "POST",
            f"{settings.office365_authority_url}/{config.tenant_id}/oauth2/v2.0/token",
            error_cls=AuthenticationError,
            data={
                "client_id": config.client_id,
                "client_secret": config.client_secret,
                "scope": "https://graph.microsoft.com/.default",
                "grant_type": "client_credentials",
            },
        )
        token = self._json(response).get("access_token")
        if not token:
            raise AuthenticationError("Office365 token response did not contain an access token")
        return token

    async def list_candidate_messages(self, config: MonitoringSnapshot, token: str) -> List[MessageRef]:
        query_filter = "hasAttachments eq true and isRead eq false"
        since = cursor_bound(config)
        if since is not None:
            query_filter += f" and receivedDateTime gt {since.strftime('%Y-%m-%dT%H:%M:%SZ')}"

        url: Optional[str] = f"{self._mailbox_url(config)}/mailFolders/Inbox/messages"
        params: Optional[dict] = {
            "$filter": query_filter,
            "$select": "id,subject,from,receivedDateTime,hasAttachments",
            "$top": PAGE_SIZE,
        }

        messages = []
        seen = set()
        while url:
            data = self._json(await self._request("GET", url, token=token, params=params))
            for item in data.get("value", []):
                if item["id"] in seen:
                    continue
                seen.add(item["id"])
                messages.append(MessageRef(
                    id=item["id"],
                    subject=item.get("subject") or "",
                    sender=((item.get("from") or {}).get("emailAddress") or {}).get("address", ""),
                    received_at=item.get("receivedDateTime") or "",
                ))
            # nextLink already carries the query string
            url = data.get("@odata.nextLink")
            params = None

        logger.info(f"Office365 listed {len(messages)} candidate message(s) for {config.monitored_email}")
        return messages

    async def fetch_pdf_attachments(self, config: MonitoringSnapshot, token: str,
                                    message: MessageRef) -> List[PdfAttachment]:
        url: Optional[str] = f"{self._mailbox_url(config)}/messages/{message.id}/attachments"

        pdfs = []
        while url:
            data = self._json(await self._request("GET", url, token=token))
            for item in data.get("value", []):
                name = item.get("name")
                content = item.get("contentBytes")
                if not is_pdf_filename(name) or not content:
                    continue
                try:
                    payload = base64.b64decode(content)
                except (binascii.Error, ValueError) as e:
                    raise ConnectorError(f"Attachment {name} of message {message.id} is not valid base64") from e
                pdfs.append(PdfAttachment(filename=name, data=payload, page_count=count_pdf_pages(payload)))
            url = data.get("@odata.nextLink")

        return pdfs

    async def apply_post_process(self, config: MonitoringSnapshot, token: str, message: MessageRef,
                                 action: str, folder: str) -> None:
        if action == ACTION_NONE:
            return

        base_url = self._mailbox_url(config)

        if action in (ACTION_MARK_READ, ACTION_MOVE, ACTION_ARCHIVE):
            await self._request("PATCH", f"{base_url}/messages/{message.id}", token=token, json={"isRead": True})

        if action == ACTION_MOVE:
            destination = await self._get_or_create_folder(base_url, token, folder)
        elif action == ACTION_ARCHIVE:
            destination = await self._get_or_create_folder(base_url, token, ARCHIVE_FOLDER)
        elif action == ACTION_DELETE:
            destination = DELETED_ITEMS_FOLDER
        elif action == ACTION_MARK_READ:
            return
        else:
            raise ConnectorError(f"Unknown post-process action: {action}")

        await self._request(
            "POST", f"{base_url}/messages/{message.id}/move", token=token, json={"destinationId": destination}
        )
        logger.debug(f"Office365 message {message.id}: {action} -> {destination}")

    async def _get_or_create_folder(self, base_url: str, token: str, display_name: str) -> str:
        folder_id = await self._find_folder(base_url, token, display_name)
        if folder_id:
            return folder_id

        data = self._json(await self._request(
            "POST", f"{base_url}/mailFolders", token=token, json={"displayName": display_name}
        ))
        if not data.get("id"):
            raise ConnectorError(f"Office365 did not return an id for new folder '{display_name}'")
        logger.info(f"Created Office365 mail folder '{display_name}'")
        return data["id"]

    async def _find_folder(self, base_url: str, token: str, display_name: str) -> Optional[str]:
        escaped = display_name.replace("'", "''")
        data = self._json(await self._request(
            "GET",
            f"{base_url}/mailFolders",
            token=token,
            params={"$filter": f"displayName eq '{escaped}'"},
        ))
        for folder in data.get("value", []):
            if folder.get("displayName") == display_name:
                return folder["id"]
        return None
