"""Pinata IPFS blob store for generated artifacts and source uploads."""

import json

import httpx

from afroverse.services.exceptions import (
    BlobAuthError,
    BlobNotFoundError,
    InvalidInputError,
    TransientNetworkError,
    UpstreamUnavailableError,
)

IPFS_REF_SCHEME = "ipfs://"


class PinataBlobStore:
    """Blob store using the Pinata pinning service. Refs take the form ``ipfs://<CID>``."""

    def __init__(
        self,
        jwt_token: str,
        gateway_domain: str = "gateway.pinata.cloud",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize Pinata blob store.

        Args:
            jwt_token: Pinata API JWT token (from PINATA_JWT env var)
            gateway_domain: Gateway domain used for fetches (default: public gateway)
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests inject a MockTransport)
        """
        self.gateway_domain = gateway_domain
        self.base_url = "https://api.pinata.cloud"
        self.timeout = timeout
        self.transport = transport
        self.headers = {"Authorization": f"Bearer {jwt_token}"}

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    def get_gateway_url(self, ref: str) -> str:
        """Convert an ipfs:// ref to a gateway URL."""
        cid = ref[len(IPFS_REF_SCHEME) :] if ref.startswith(IPFS_REF_SCHEME) else ref
        return f"https://{self.gateway_domain}/ipfs/{cid}"

    @staticmethod
    def _raise_for_status(response: httpx.Response, operation: str) -> None:
        if response.status_code == 429:
            raise UpstreamUnavailableError(f"Pinata rate limit exceeded: {response.text}")
        elif response.status_code >= 500:
            raise UpstreamUnavailableError(
                f"Pinata unavailable ({response.status_code}): {response.text}"
            )
        elif response.status_code in (401, 403):
            raise BlobAuthError(
                f"Pinata rejected credentials for {operation} ({response.status_code}). "
                "Check PINATA_JWT configuration."
            )
        elif response.status_code == 404:
            raise BlobNotFoundError(f"Blob not found on IPFS gateway: {response.url}")
        elif response.status_code == 400:
            raise InvalidInputError(f"Bad request to Pinata: {response.text}")
        response.raise_for_status()

    async def fetch(self, ref: str) -> bytes:
        """Download blob contents from the IPFS gateway.

        Raises:
            BlobNotFoundError: Unknown CID (404)
            UpstreamUnavailableError: Rate limit (429) or gateway failure (5xx)
            TransientNetworkError: Timeout or connection failure
        """
        try:
            async with self._client() as client:
                response = await client.get(self.get_gateway_url(ref))
                self._raise_for_status(response, "fetch")
                return response.content
        except httpx.TimeoutException as e:
            raise TransientNetworkError(f"IPFS gateway timeout after {self.timeout}s: {e}") from e
        except httpx.TransportError as e:
            raise TransientNetworkError(f"IPFS gateway network error: {e}") from e

    async def store(self, data: bytes, path: str, content_type: str = "image/png") -> str:
        """Pin blob contents to IPFS.

        Args:
            data: Raw bytes to upload
            path: Logical path, used as the pinned file name
            content_type: MIME type of the upload

        Returns:
            Ref of the form ipfs://<CID>
        """
        filename = path.rsplit("/", 1)[-1]
        try:
            async with self._client() as client:
                response = await client.post(
                    f"{self.base_url}/pinning/pinFileToIPFS",
                    headers=self.headers,
                    files={"file": (filename, data, content_type)},
                    data={
                        "pinataOptions": '{"cidVersion": 1}',
                        "pinataMetadata": json.dumps({"name": filename, "keyvalues": {"path": path}}),
                    },
                )
                self._raise_for_status(response, "store")
                return f"{IPFS_REF_SCHEME}{response.json()['IpfsHash']}"
        except httpx.TimeoutException as e:
            raise TransientNetworkError(f"Pinata upload timeout after {self.timeout}s: {e}") from e
        except httpx.TransportError as e:
            raise TransientNetworkError(f"Pinata network error: {e}") from e
