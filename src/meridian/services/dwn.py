"""
Vault Transport - Network client for DID publication and DWN records.

Wire protocol:
- DID gateway: PUT {gateway}/{suffix} with {"document", "signature"};
  GET {gateway}/{suffix} resolves it (404 = unknown)
- DWN: JSON-RPC 2.0 "dwn.processMessage" POSTed to the first endpoint:
    {target, message: {descriptor, authorization}, encodedData?}
  authorization.signature is an Ed25519 signature (base64url) over the
  canonical JSON of the descriptor

Failures are raised as GatewayError:
- timeouts -> TIMEOUT_ERROR
- connection failures and 5xx -> NETWORK_ERROR
- anything else the node rejects -> UNKNOWN_ERROR with the node's detail
"""

import hashlib
import json
import logging
import uuid
from typing import Any, Optional

import httpx

from meridian.errors import ErrorCode, GatewayError
from meridian.models.identity import QueryFilter, VaultRecord, DATA_FORMAT_JSON
from meridian.wallet.crypto import IdentityKey, b64url_decode, b64url_encode, canonical_json

logger = logging.getLogger(__name__)

DWN_METHOD = "dwn.processMessage"

# DWN reply status codes
REPLY_OK = (200, 202, 204)
REPLY_NOT_FOUND = 404


class VaultTransport:
    """Abstract base class for the live identity/vault network."""

    async def publish_did(self, key: IdentityKey, document: dict) -> None:
        raise NotImplementedError

    async def resolve_did(self, did: str) -> Optional[dict]:
        """Return the DID document, or None if the DID is unknown."""
        raise NotImplementedError

    async def write_record(self, key: IdentityKey, did: str, record: VaultRecord) -> None:
        raise NotImplementedError

    async def read_record(self, key: IdentityKey, did: str, record_id: str) -> Optional[VaultRecord]:
        raise NotImplementedError

    async def query_records(self, key: IdentityKey, did: str,
                            query: QueryFilter) -> list[VaultRecord]:
        raise NotImplementedError

    async def delete_record(self, key: IdentityKey, did: str, record_id: str) -> bool:
        """Delete a record. Returns False if it did not exist."""
        raise NotImplementedError

    async def close(self) -> None:
        pass


def build_did_document(key: IdentityKey, endpoints: list[str]) -> dict:
    """DID document with one signing key and the DWN service endpoints."""
    did = key.did
    return {
        "id": did,
        "verificationMethod": [{
            "id": f"{did}#0",
            "type": "JsonWebKey",
            "controller": did,
            "publicKeyJwk": key.public_jwk,
        }],
        "authentication": [f"{did}#0"],
        "assertionMethod": [f"{did}#0"],
        "service": [{
            "id": f"{did}#dwn",
            "type": "DecentralizedWebNode",
            "serviceEndpoint": list(endpoints),
        }],
    }


def document_endpoints(document: dict) -> list[str]:
    """Extract DWN service endpoints from a DID document."""
    for service in document.get("service") or []:
        if service.get("type") == "DecentralizedWebNode":
            endpoint = service.get("serviceEndpoint")
            return list(endpoint) if isinstance(endpoint, list) else [endpoint]
    return []


class HttpVaultTransport(VaultTransport):
    """VaultTransport over HTTP using httpx."""

    def __init__(self, endpoints: list[str], did_gateway: str,
                 timeout: float = 15.0,
                 client: Optional[httpx.AsyncClient] = None):
        if not endpoints:
            raise ValueError("At least one DWN endpoint is required")
        self.endpoints = list(endpoints)
        self.did_gateway = did_gateway.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)

    # ============================================
    # HTTP plumbing
    # ============================================

    async def _send(self, method: str, url: str, body: Optional[dict] = None) -> httpx.Response:
        try:
            response = await self._client.request(method, url, json=body)
        except httpx.TimeoutException as e:
            logger.warning(f"{method} {url} timed out")
            raise GatewayError(ErrorCode.TIMEOUT_ERROR, cause=e) from e
        except httpx.TransportError as e:
            logger.warning(f"{method} {url} failed: {e}")
            raise GatewayError(ErrorCode.NETWORK_ERROR, cause=e) from e

        if response.status_code >= 500:
            logger.warning(f"{method} {url} returned {response.status_code}")
            raise GatewayError(
                ErrorCode.NETWORK_ERROR,
                f"Server error ({response.status_code})",
            )
        return response

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except json.JSONDecodeError as e:
            raise GatewayError(ErrorCode.UNKNOWN_ERROR, "Malformed response from server", e) from e

    async def _process_message(self, key: IdentityKey, target: str, descriptor: dict,
                               data: Optional[bytes] = None) -> dict:
        """Send one signed DWN message and return its reply."""
        message = {
            "descriptor": descriptor,
            "authorization": {
                "signer": key.did,
                "signature": key.sign_json(descriptor),
            },
        }
        params = {"target": target, "message": message}
        if data is not None:
            params["encodedData"] = b64url_encode(data)
        request = {
            "jsonrpc": "2.0",
            "id": str(uuid.uuid4()),
            "method": DWN_METHOD,
            "params": params,
        }

        response = await self._send("POST", self.endpoints[0], request)
        body = self._json(response)
        if response.status_code >= 400 or not isinstance(body, dict):
            raise GatewayError(ErrorCode.UNKNOWN_ERROR,
                               f"DWN request rejected ({response.status_code})")
        if body.get("error"):
            error = body["error"]
            raise GatewayError(ErrorCode.UNKNOWN_ERROR,
                               f"DWN error: {error.get('message', error)}")

        reply = (body.get("result") or {}).get("reply") or {}
        status = reply.get("status") or {}
        code = status.get("code", 500)
        if code >= 500:
            raise GatewayError(ErrorCode.NETWORK_ERROR,
                               f"DWN node error ({code}): {status.get('detail', '')}")
        if code not in REPLY_OK and code != REPLY_NOT_FOUND:
            raise GatewayError(ErrorCode.UNKNOWN_ERROR,
                               f"DWN rejected message ({code}): {status.get('detail', '')}")
        return reply

    # ============================================
    # DID gateway
    # ============================================

    async def publish_did(self, key: IdentityKey, document: dict) -> None:
        url = f"{self.did_gateway}/{key.did_suffix}"
        body = {"document": document, "signature": key.sign_json(document)}
        response = await self._send("PUT", url, body)
        if response.status_code >= 400:
            raise GatewayError(ErrorCode.DID_CREATION_FAILED,
                               f"DID gateway rejected publication ({response.status_code})")
        logger.info(f"Published DID document for {key.did}")

    async def resolve_did(self, did: str) -> Optional[dict]:
        suffix = did.split(":", 2)[-1]
        response = await self._send("GET", f"{self.did_gateway}/{suffix}")
        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise GatewayError(ErrorCode.UNKNOWN_ERROR,
                               f"DID resolution failed ({response.status_code})")
        body = self._json(response)
        return body.get("document") if isinstance(body, dict) else None

    # ============================================
    # Records
    # ============================================

    async def write_record(self, key: IdentityKey, did: str, record: VaultRecord) -> None:
        data = json.dumps(record.payload).encode("utf-8")
        descriptor = {
            "interface": "Records",
            "method": "Write",
            "recordId": record.id,
            "schema": record.schema,
            "dataFormat": record.data_format,
            "published": record.published,
            "dateCreated": record.created_at,
            "dataDigest": hashlib.sha256(data).hexdigest(),
        }
        await self._process_message(key, did, descriptor, data)

    async def read_record(self, key: IdentityKey, did: str, record_id: str) -> Optional[VaultRecord]:
        descriptor = {
            "interface": "Records",
            "method": "Read",
            "filter": {"recordId": record_id},
        }
        reply = await self._process_message(key, did, descriptor)
        if reply["status"]["code"] == REPLY_NOT_FOUND or not reply.get("record"):
            return None
        return _record_from_entry(reply["record"])

    async def query_records(self, key: IdentityKey, did: str,
                            query: QueryFilter) -> list[VaultRecord]:
        descriptor = {
            "interface": "Records",
            "method": "Query",
            "filter": query.to_wire(),
        }
        reply = await self._process_message(key, did, descriptor)
        return [_record_from_entry(entry) for entry in reply.get("entries") or []]

    async def delete_record(self, key: IdentityKey, did: str, record_id: str) -> bool:
        descriptor = {
            "interface": "Records",
            "method": "Delete",
            "recordId": record_id,
        }
        reply = await self._process_message(key, did, descriptor)
        return reply["status"]["code"] != REPLY_NOT_FOUND

    async def close(self) -> None:
        await self._client.aclose()


def _record_from_entry(entry: dict) -> VaultRecord:
    """Convert a DWN reply entry into a VaultRecord."""
    descriptor = entry.get("descriptor") or {}
    encoded = entry.get("encodedData")
    payload = json.loads(b64url_decode(encoded).decode("utf-8")) if encoded else None
    return VaultRecord(
        id=entry.get("recordId") or descriptor.get("recordId"),
        schema=descriptor.get("schema", ""),
        payload=payload,
        created_at=descriptor.get("dateCreated", ""),
        data_format=descriptor.get("dataFormat", DATA_FORMAT_JSON),
        published=bool(descriptor.get("published", False)),
    )
