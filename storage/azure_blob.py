from __future__ import annotations

import logging
from email.utils import formatdate
from urllib.parse import quote

import httpx

from core.errors import error_from_response
from models.event import SubscriptionContext
from providers.credentials import STORAGE_SCOPE, TokenCredential
from storage.base import BlobItem, BlobStore

_API_VERSION = "2021-08-06"

log = logging.getLogger(__name__)


class AzureBlobStore(BlobStore):
    """Blob backend talking to the Azure Blob REST API.

    Conditional writes use ``If-Match: <etag>``, or ``If-None-Match: *`` when
    the caller expects the blob not to exist yet.  Storage answers 412
    (``ConditionNotMet``) or 409 (``BlobAlreadyExists``) when the
    precondition fails; both are reported as a lost race.

    ``account_url`` may point at Azurite (``http://127.0.0.1:10000/devstoreaccount1``)
    for local development.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        account_url: str,
        container: str,
    ) -> None:
        self._client = client
        self._account_url = account_url.rstrip("/")
        self._container = container
        self._container_ready = False

    @property
    def name(self) -> str:
        return "azure"

    def _blob_url(self, key: str) -> str:
        return f"{self._account_url}/{self._container}/{quote(key)}"

    async def _headers(self, context: SubscriptionContext) -> dict[str, str]:
        headers = {
            "x-ms-version": _API_VERSION,
            "x-ms-date": formatdate(usegmt=True),
        }
        credential = context.credential
        if isinstance(credential, TokenCredential):
            token = await credential.get_token(STORAGE_SCOPE)
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def get(self, key: str, context: SubscriptionContext) -> BlobItem | None:
        resp = await self._client.get(self._blob_url(key), headers=await self._headers(context))

        if resp.status_code == 404:
            return None

        if resp.status_code != 200:
            raise error_from_response(resp.status_code, resp.text)

        return BlobItem(data=resp.content, version=resp.headers.get("etag", ""))

    async def put(
        self,
        key: str,
        data: bytes,
        if_match: str | None,
        context: SubscriptionContext,
    ) -> str | None:
        resp = await self._put_blob(key, data, if_match, context)

        if resp.status_code == 404 and "ContainerNotFound" in resp.text:
            await self._create_container(context)
            resp = await self._put_blob(key, data, if_match, context)

        if resp.status_code in (409, 412):
            log.info(
                "Conditional write of %s rejected (%d); another writer updated it",
                key,
                resp.status_code,
            )
            return None

        if resp.status_code != 201:
            raise error_from_response(resp.status_code, resp.text)

        return resp.headers.get("etag", "")

    async def _put_blob(
        self,
        key: str,
        data: bytes,
        if_match: str | None,
        context: SubscriptionContext,
    ) -> httpx.Response:
        headers = await self._headers(context)
        headers["x-ms-blob-type"] = "BlockBlob"
        headers["Content-Type"] = "application/json"
        if if_match is None:
            headers["If-None-Match"] = "*"
        else:
            headers["If-Match"] = if_match
        return await self._client.put(self._blob_url(key), headers=headers, content=data)

    async def _create_container(self, context: SubscriptionContext) -> None:
        if self._container_ready:
            return
        resp = await self._client.put(
            f"{self._account_url}/{self._container}",
            params={"restype": "container"},
            headers=await self._headers(context),
        )
        # 409 ContainerAlreadyExists: a concurrent run created it first.
        if resp.status_code not in (201, 409):
            raise error_from_response(resp.status_code, resp.text)
        log.info("Created cache container %s", self._container)
        self._container_ready = True
