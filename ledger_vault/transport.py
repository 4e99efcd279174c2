"""HTTP transport helpers shared by the remote, bank-link and AI clients."""
import aiohttp
import orjson


def json_dumps(value) -> str:
    return orjson.dumps(value).decode("utf-8")


def client_session(timeout: float) -> aiohttp.ClientSession:
    """Return a ClientSession that serializes JSON bodies with orjson."""
    return aiohttp.ClientSession(
        timeout=aiohttp.ClientTimeout(total=timeout),
        json_serialize=json_dumps,
    )


async def read_json(response: aiohttp.ClientResponse):
    """Decode a response body with orjson regardless of its content type."""
    return orjson.loads(await response.read())
